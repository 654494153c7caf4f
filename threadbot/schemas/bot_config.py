from pydantic import BaseModel, ConfigDict, Field, field_validator

from threadbot.core.datetime_utils import is_valid_timezone, normalize_local_time
from threadbot.models.bot import PromptSource, WebhookStatus


class BotConfigUpdate(BaseModel):
    """Request body for saving delivery settings."""

    timezone: str | None = Field(default=None, max_length=64)
    morning_time: str | None = Field(default=None, max_length=5)
    evening_time: str | None = Field(default=None, max_length=5)
    is_active: bool | None = None
    prompt_source: PromptSource | None = None
    notion_token: str | None = Field(default=None, max_length=255)
    notion_database_id: str | None = Field(default=None, max_length=64)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not is_valid_timezone(v):
            raise ValueError(f"Invalid timezone: {v}")
        return v

    @field_validator("morning_time", "evening_time")
    @classmethod
    def validate_time(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return normalize_local_time(v)


class BotConfigResponse(BaseModel):
    """A user's delivery settings. The Notion token is never echoed back."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    timezone: str
    morning_time: str
    evening_time: str
    is_active: bool
    prompt_source: PromptSource
    telegram_linked: bool = False
    notion_database_id: str | None = None
    has_notion_token: bool = False
    last_webhook_status: WebhookStatus | None = None
    last_webhook_error: str | None = None
