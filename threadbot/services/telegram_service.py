"""
Telegram Bot API gateway for the shared prompt bot.

One bot token serves every user; chats are addressed by chat ID only.
Uses the REST API directly over httpx, no long-running bot process.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx

from threadbot.config import get_config
from threadbot.core.logging import get_logger
from threadbot.core.security import is_valid_webhook_secret

logger = get_logger(__name__)

# MarkdownV2 reserved characters plus the escape character itself
MARKDOWN_SPECIAL_CHARS = re.compile(r"([\\_*\[\]()~`>#+\-=|{}.!])")


class GatewayError(Exception):
    """Base class for messaging gateway errors."""


class GatewayTransportError(GatewayError):
    """The platform could not be reached (network failure or timeout)."""


class InvalidWebhookSecretError(GatewayError, ValueError):
    """Webhook secret does not match the platform's token format."""


@dataclass
class TelegramResponse:
    """Parsed Bot API response."""

    ok: bool
    status_code: int
    description: str | None = None
    result: Any = None
    retry_after: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def escape_markdown(text: str) -> str:
    """
    Escape text for MarkdownV2 so it renders literally.

    Every reserved character gets exactly one preceding backslash, including
    backslashes already present in the input.
    """
    return MARKDOWN_SPECIAL_CHARS.sub(r"\\\1", text)


def format_prompt_message(
    slot: str,
    local_date: date,
    theme: str | None,
    content: str,
    source: str = "generated",
) -> str:
    """Build the text of a scheduled prompt message."""
    greeting = "Good morning!" if slot == "morning" else "Good afternoon!"
    emoji = "🌅" if slot == "morning" else "🌆"
    label = "Morning" if slot == "morning" else "Evening"
    date_label = f"{local_date.strftime('%A')} {local_date.isoformat()}"
    reply_hint = (
        "Reply to this message to log your response to Notion."
        if source == "external"
        else "Reply to this message to log your response."
    )
    topic = theme or "Daily Prompt"

    header = f"{emoji} {date_label} - {label}\n🎯 {topic}"
    return f"{greeting}\n\n{header}\n\n{content}\n\n💬 {reply_hint}"


class TelegramGateway:
    """Thin async client over the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    async def _call(self, method: str, payload: dict[str, Any] | None = None) -> TelegramResponse:
        """
        Call a Bot API method.

        Raises:
            GatewayTransportError: On network failure or timeout
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(self._method_url(method), json=payload or {})
        except httpx.TransportError as e:
            raise GatewayTransportError(f"{method}: {type(e).__name__}: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        parameters = data.get("parameters") or {}
        return TelegramResponse(
            ok=bool(data.get("ok")) and resp.status_code < 400,
            status_code=resp.status_code,
            description=data.get("description"),
            result=data.get("result"),
            retry_after=parameters.get("retry_after"),
            raw=data,
        )

    async def send_message(self, chat_id: str, text: str, escape: bool = True) -> bool:
        """
        Send a text message to a chat.

        Returns:
            True if the platform accepted the message, False if it was rejected
            (including rate limiting) or the bot token is missing

        Raises:
            GatewayTransportError: On network failure or timeout
        """
        if not self.bot_token:
            logger.warning("telegram_bot_token_not_set")
            return False

        payload = {
            "chat_id": chat_id,
            "text": escape_markdown(text) if escape else text,
            "parse_mode": "MarkdownV2",
        }

        try:
            response = await self._call("sendMessage", payload)
        except GatewayTransportError as e:
            logger.bind(chat_id=chat_id, error=str(e)).error("telegram_send_transport_error")
            raise

        if response.ok:
            return True

        if response.status_code == 429:
            logger.bind(
                chat_id=chat_id,
                retry_after=response.retry_after,
            ).warning("telegram_rate_limited")
        else:
            logger.bind(
                chat_id=chat_id,
                status=response.status_code,
                description=response.description,
            ).warning("telegram_send_rejected")
        return False

    async def set_webhook(self, url: str, secret: str) -> TelegramResponse:
        """
        Register the shared webhook URL with the platform.

        Re-registering the same URL is harmless.

        Raises:
            InvalidWebhookSecretError: If the secret has a disallowed format
            GatewayTransportError: On network failure or timeout
        """
        if not is_valid_webhook_secret(secret):
            raise InvalidWebhookSecretError(
                "Webhook secret must be 1-256 characters of A-Z, a-z, 0-9, _ or -"
            )

        response = await self._call(
            "setWebhook",
            {"url": url, "secret_token": secret, "allowed_updates": ["message"]},
        )
        if response.ok:
            logger.bind(url=url).info("telegram_webhook_set")
        else:
            logger.bind(
                url=url,
                status=response.status_code,
                description=response.description,
            ).warning("telegram_webhook_set_failed")
        return response

    async def get_webhook_info(self) -> TelegramResponse:
        return await self._call("getWebhookInfo")

    async def delete_webhook(self) -> TelegramResponse:
        response = await self._call("deleteWebhook")
        logger.bind(ok=response.ok).info("telegram_webhook_deleted")
        return response


def build_gateway(transport: httpx.AsyncBaseTransport | None = None) -> TelegramGateway:
    """Create a gateway for the shared bot from settings."""
    config = get_config()
    return TelegramGateway(
        bot_token=config.settings.telegram_bot_token,
        api_base=config.settings.telegram_api_base,
        timeout_seconds=config.delivery.http_timeout_seconds,
        transport=transport,
    )
