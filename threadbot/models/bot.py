"""Per-user bot delivery settings and conversational state."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, Enum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from threadbot.models.base import Base, UpdatedAtMixin


class PromptSource(str, enum.Enum):
    """Where a user's prompts come from."""

    GENERATED = "generated"
    EXTERNAL = "external"


class WebhookStatus(str, enum.Enum):
    """Outcome of the last webhook registration attempt."""

    SUCCESS = "success"
    FAILED = "failed"


class BotConfig(Base, UpdatedAtMixin):
    """Delivery settings for one user.

    All users share one Telegram bot; a user is identified on inbound
    messages solely by telegram_chat_id.
    """

    __tablename__ = "bot_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    # Schedule
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York")
    morning_time: Mapped[str] = mapped_column(String(5), default="09:00")
    evening_time: Mapped[str] = mapped_column(String(5), default="18:00")
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    # Chat binding (set by account linking)
    telegram_chat_id: Mapped[str | None] = mapped_column(
        String(32), unique=True, index=True, default=None
    )

    # Content source
    prompt_source: Mapped[PromptSource] = mapped_column(
        Enum(
            PromptSource,
            values_callable=lambda e: [x.value for x in e],
            native_enum=False,
            length=16,
        ),
        default=PromptSource.GENERATED,
    )
    notion_token: Mapped[str | None] = mapped_column(Text, default=None)
    notion_database_id: Mapped[str | None] = mapped_column(String(64), default=None)

    # Webhook health
    last_webhook_setup_at: Mapped[datetime | None] = mapped_column(default=None)
    last_webhook_status: Mapped[WebhookStatus | None] = mapped_column(
        Enum(
            WebhookStatus,
            values_callable=lambda e: [x.value for x in e],
            native_enum=False,
            length=16,
        ),
        default=None,
    )
    last_webhook_error: Mapped[str | None] = mapped_column(Text, default=None)

    def slot_time(self, slot: str) -> str:
        """Configured local time for a slot ("morning" or "evening")."""
        return self.morning_time if slot == "morning" else self.evening_time

    def __repr__(self) -> str:
        return f"<BotConfig user={self.user_id} chat={self.telegram_chat_id}>"


class BotState(Base, UpdatedAtMixin):
    """Pointer to the prompt a user was last sent.

    Replies are logged against last_prompt_ref.
    """

    __tablename__ = "bot_state"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    last_prompt_type: Mapped[str | None] = mapped_column(String(16), default=None)
    last_prompt_date: Mapped[date | None] = mapped_column(Date, default=None)
    last_prompt_sent_at: Mapped[datetime | None] = mapped_column(default=None)
    # PromptRecord id for generated prompts, page id for external ones
    last_prompt_ref: Mapped[str | None] = mapped_column(String(64), default=None)

    def __repr__(self) -> str:
        return f"<BotState user={self.user_id} last={self.last_prompt_type}>"
