from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from threadbot.core.datetime_utils import is_valid_timezone


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str | None = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: int
    chat: TelegramChat
    text: str | None = None
    date: int | None = None


class TelegramUpdate(BaseModel):
    """Inbound webhook payload. Only text messages are acted on."""

    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: TelegramMessage | None = None


class LinkRequest(BaseModel):
    """Request body for a new verification code."""

    timezone: str | None = Field(default=None, max_length=64)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not is_valid_timezone(v):
            return None  # Fall back to default instead of raising error
        return v


class LinkCodeResponse(BaseModel):
    """A freshly issued verification code."""

    code: str
    expires_at: datetime
    bot_username: str
    bot_link: str


class LinkStatusResponse(BaseModel):
    """Polled by the client until the chat is bound."""

    linked: bool
    chat_id: str | None = None
    pending_code: bool = False
    expires_at: datetime | None = None


class WebhookSetupResponse(BaseModel):
    success: bool
    url: str
    error: str | None = None
