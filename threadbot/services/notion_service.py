"""
Notion REST client for users whose prompts live in their own database.

Pages are matched by a "Date" property equal to the local date and a
"Name" title containing the slot name.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from threadbot.config import get_config
from threadbot.core.logging import get_logger

logger = get_logger(__name__)


class NotionError(Exception):
    """Notion API request failed."""


@dataclass
class NotionPage:
    """A prompt page found in a user's database."""

    page_id: str
    title: str
    topic: str


def _plain_text(rich_text: list[dict[str, Any]] | None) -> str:
    return "".join((rt or {}).get("plain_text", "") for rt in rich_text or [])


def _page_topic(properties: dict[str, Any]) -> str:
    for name in ("Topic", "Week"):
        text = _plain_text((properties.get(name) or {}).get("rich_text"))
        if text:
            return text
    return _plain_text((properties.get("Name") or {}).get("title")) or "Daily Prompt"


class NotionClient:
    """Minimal async Notion API client bound to one integration token."""

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.notion.com/v1",
        api_version: str = "2022-06-28",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Notion-Version": api_version,
            "Content-Type": "application/json",
        }

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.request(
                    method, f"{self.api_base}{path}", headers=self._headers, json=json
                )
        except httpx.TransportError as e:
            raise NotionError(f"Notion request failed: {e}") from e

        if resp.status_code >= 400:
            logger.bind(status=resp.status_code, path=path).warning("notion_request_failed")
            raise NotionError(f"Notion returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise NotionError(f"Notion returned a non-JSON response for {path}") from e
        if not isinstance(data, dict):
            raise NotionError(f"Notion returned an unexpected payload for {path}")
        return data

    async def find_prompt(self, database_id: str, on_date: date, slot: str) -> NotionPage | None:
        """Find the page for a date whose title mentions the slot."""
        data = await self._request(
            "POST",
            f"/databases/{database_id}/query",
            {
                "filter": {"property": "Date", "date": {"equals": on_date.isoformat()}},
                "sorts": [{"property": "Date", "direction": "descending"}],
            },
        )

        for page in data.get("results") or []:
            properties = page.get("properties") or {}
            title = _plain_text((properties.get("Name") or {}).get("title"))
            if slot.lower() in title.lower():
                return NotionPage(page_id=page["id"], title=title, topic=_page_topic(properties))
        return None

    async def get_page_text(self, page_id: str) -> str:
        """Flatten paragraph and list blocks of a page into plain text."""
        data = await self._request("GET", f"/blocks/{page_id}/children")

        lines = []
        for block in data.get("results") or []:
            block_type = block.get("type")
            if block_type not in ("paragraph", "bulleted_list_item", "numbered_list_item"):
                continue
            text = _plain_text((block.get(block_type) or {}).get("rich_text"))
            if not text.strip():
                continue
            lines.append(f"• {text}" if block_type == "bulleted_list_item" else text)

        return "\n\n".join(lines)

    async def append_reply(self, page_id: str, reply: str) -> None:
        await self._request(
            "PATCH",
            f"/blocks/{page_id}/children",
            {
                "children": [
                    {
                        "object": "block",
                        "type": "paragraph",
                        "paragraph": {
                            "rich_text": [{"type": "text", "text": {"content": f"Reply: {reply}"}}]
                        },
                    }
                ]
            },
        )


def build_notion_client(token: str) -> NotionClient:
    """Create a Notion client for a user's integration token."""
    config = get_config()
    return NotionClient(
        token=token,
        api_base=config.settings.notion_api_base,
        api_version=config.settings.notion_api_version,
        timeout_seconds=config.delivery.http_timeout_seconds,
    )
