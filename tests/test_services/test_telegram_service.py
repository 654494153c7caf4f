"""Tests for the Telegram gateway and message formatting."""

import json
from datetime import date

import httpx
import pytest

from threadbot.services.telegram_service import (
    GatewayTransportError,
    InvalidWebhookSecretError,
    TelegramGateway,
    escape_markdown,
    format_prompt_message,
)


def _gateway(handler, token: str = "123456:test-token") -> TelegramGateway:
    return TelegramGateway(
        bot_token=token,
        api_base="https://telegram.test",
        transport=httpx.MockTransport(handler),
    )


class TestEscapeMarkdown:
    """MarkdownV2 escaping must be total and single-pass."""

    def test_escapes_every_reserved_character(self):
        reserved = "_*[]()~`>#+-=|{}.!"
        escaped = escape_markdown(reserved)
        assert escaped == "".join(f"\\{c}" for c in reserved)

    def test_escapes_backslash(self):
        assert escape_markdown("a\\b") == "a\\\\b"

    def test_plain_text_unchanged(self):
        assert escape_markdown("Hello world 123") == "Hello world 123"

    def test_realistic_prompt(self):
        text = "1. What's one thing (big or small) you learned?"
        assert escape_markdown(text) == "1\\. What's one thing \\(big or small\\) you learned?"

    def test_already_escaped_text_is_escaped_again(self):
        """Each reserved character gets exactly one extra backslash."""
        assert escape_markdown("\\.") == "\\\\\\."


class TestFormatPromptMessage:
    def test_morning_message(self):
        text = format_prompt_message(
            "morning", date(2026, 3, 2), "Gratitude", "1. First\n2. Second"
        )
        assert text.startswith("Good morning!")
        assert "Monday 2026-03-02 - Morning" in text
        assert "🎯 Gratitude" in text
        assert "1. First\n2. Second" in text
        assert text.endswith("Reply to this message to log your response.")

    def test_evening_external_message(self):
        text = format_prompt_message("evening", date(2026, 3, 2), None, "Body", "external")
        assert text.startswith("Good afternoon!")
        assert "Evening" in text
        assert "🎯 Daily Prompt" in text
        assert text.endswith("log your response to Notion.")


@pytest.mark.asyncio
class TestSendMessage:
    """Tests for TelegramGateway.send_message."""

    async def test_accepted(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        assert await _gateway(handler).send_message("42", "Hi. There!") is True

        assert requests[0].url.path == "/bot123456:test-token/sendMessage"
        payload = json.loads(requests[0].content)
        assert payload == {"chat_id": "42", "text": "Hi\\. There\\!", "parse_mode": "MarkdownV2"}

    async def test_unescaped_when_requested(self):
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})

        await _gateway(handler).send_message("42", "*bold*", escape=False)
        assert payloads[0]["text"] == "*bold*"

    async def test_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"ok": False, "description": "Bad Request: chat not found"}
            )

        assert await _gateway(handler).send_message("42", "hi") is False

    async def test_ok_false_with_200(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "description": "nope"})

        assert await _gateway(handler).send_message("42", "hi") is False

    async def test_rate_limited(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                json={
                    "ok": False,
                    "description": "Too Many Requests",
                    "parameters": {"retry_after": 3},
                },
            )

        assert await _gateway(handler).send_message("42", "hi") is False

    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(GatewayTransportError):
            await _gateway(handler).send_message("42", "hi")

    async def test_missing_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        assert await _gateway(handler, token="").send_message("42", "hi") is False


@pytest.mark.asyncio
class TestSetWebhook:
    """Tests for TelegramGateway.set_webhook."""

    async def test_invalid_secret_never_reaches_network(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"ok": True})

        with pytest.raises(InvalidWebhookSecretError):
            await _gateway(handler).set_webhook("https://x.test/hook", "bad secret!")
        assert calls == []

    async def test_registers_url_and_secret(self):
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True, "result": True})

        response = await _gateway(handler).set_webhook("https://x.test/hook", "good_secret-1")

        assert response.ok is True
        assert payloads[0]["url"] == "https://x.test/hook"
        assert payloads[0]["secret_token"] == "good_secret-1"
        assert payloads[0]["allowed_updates"] == ["message"]

    async def test_platform_rejection_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"ok": False, "description": "bad webhook: HTTPS url must be provided"}
            )

        response = await _gateway(handler).set_webhook("http://x.test/hook", "good")
        assert response.ok is False
        assert "HTTPS" in response.description


@pytest.mark.asyncio
class TestWebhookMaintenance:
    """getWebhookInfo and deleteWebhook, used by the CLI."""

    async def test_webhook_info(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/bot123456:test-token/getWebhookInfo"
            return httpx.Response(
                200,
                json={
                    "ok": True,
                    "result": {"url": "https://x.test/hook", "pending_update_count": 2},
                },
            )

        response = await _gateway(handler).get_webhook_info()

        assert response.ok is True
        assert response.result["pending_update_count"] == 2

    async def test_delete_webhook(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"ok": True, "result": True})

        response = await _gateway(handler).delete_webhook()

        assert response.ok is True
        assert paths == ["/bot123456:test-token/deleteWebhook"]

    async def test_delete_webhook_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(GatewayTransportError):
            await _gateway(handler).delete_webhook()
