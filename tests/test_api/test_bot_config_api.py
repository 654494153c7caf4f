"""Tests for the bot configuration endpoints."""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


class TestBotConfigEndpoints:
    """GET and PUT /api/bot-config."""

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/bot-config")
        assert response.status_code == 401

    async def test_not_configured(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/bot-config", headers=auth_headers("u1"))
        assert response.status_code == 404

    async def test_create_and_read(self, client: AsyncClient, auth_headers):
        response = await client.put(
            "/api/bot-config",
            json={"timezone": "America/New_York", "morning_time": "6:30"},
            headers=auth_headers("u1"),
        )
        assert response.status_code == 200
        assert response.json()["morning_time"] == "06:30"

        response = await client.get("/api/bot-config", headers=auth_headers("u1"))
        assert response.status_code == 200
        data = response.json()
        assert data["timezone"] == "America/New_York"
        assert data["telegram_linked"] is False
        assert "notion_token" not in data

    async def test_invalid_timezone(self, client: AsyncClient, auth_headers):
        response = await client.put(
            "/api/bot-config", json={"timezone": "Mars/Olympus"}, headers=auth_headers("u1")
        )
        assert response.status_code == 422

    async def test_invalid_time(self, client: AsyncClient, auth_headers):
        response = await client.put(
            "/api/bot-config", json={"evening_time": "7pm"}, headers=auth_headers("u1")
        )
        assert response.status_code == 422

    async def test_activating_external_source_needs_credentials(
        self, client: AsyncClient, auth_headers
    ):
        response = await client.put(
            "/api/bot-config",
            json={"prompt_source": "external", "is_active": True},
            headers=auth_headers("u1"),
        )
        assert response.status_code == 422

    async def test_inactive_external_source_without_credentials(
        self, client: AsyncClient, auth_headers
    ):
        response = await client.put(
            "/api/bot-config", json={"prompt_source": "external"}, headers=auth_headers("u1")
        )

        assert response.status_code == 200
        assert response.json()["prompt_source"] == "external"
        assert response.json()["is_active"] is False

    async def test_token_is_not_echoed(self, client: AsyncClient, auth_headers):
        response = await client.put(
            "/api/bot-config",
            json={
                "prompt_source": "external",
                "notion_token": "secret_abc",
                "notion_database_id": "db-1",
            },
            headers=auth_headers("u1"),
        )

        assert response.status_code == 200
        assert response.json()["has_notion_token"] is True
        assert "secret_abc" not in response.text
