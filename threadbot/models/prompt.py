"""Prompt calendar and per-slot delivery ledger."""

import enum
import uuid
from datetime import date as date_type
from datetime import datetime

from sqlalchemy import JSON, Date, Enum, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from threadbot.models.base import Base, UpdatedAtMixin


class PromptSlot(str, enum.Enum):
    """Daily delivery slot."""

    MORNING = "morning"
    EVENING = "evening"


class PromptStatus(str, enum.Enum):
    """Prompt lifecycle status."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENT = "sent"


class DeliveryStatus(str, enum.Enum):
    """State of a delivery claim."""

    CLAIMED = "claimed"
    SENT = "sent"
    FAILED = "failed"


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda e: [x.value for x in e],
        native_enum=False,
        length=16,
    )


class PromptRecord(Base, UpdatedAtMixin):
    """One generated set of prompts for a user, date and slot."""

    __tablename__ = "user_prompts"
    __table_args__ = (
        UniqueConstraint("user_id", "date", "post_type", name="uq_user_prompt_slot"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    date: Mapped[date_type] = mapped_column(Date, index=True)
    slot: Mapped[PromptSlot] = mapped_column("post_type", _enum_column(PromptSlot))
    name: Mapped[str] = mapped_column(String(255), default="")
    theme: Mapped[str] = mapped_column("week_theme", String(255), default="")
    prompts: Mapped[list[str]] = mapped_column(JSON, default=list)
    status: Mapped[PromptStatus] = mapped_column(
        _enum_column(PromptStatus), default=PromptStatus.DRAFT
    )
    response: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<PromptRecord {self.user_id} {self.date} {self.slot.value}>"


class PromptDelivery(Base):
    """Idempotency ledger: at most one delivery per user, local date and slot.

    The row is inserted before sending; the unique constraint makes the
    insert the atomic "not yet sent today" check shared by overlapping
    sweeps and the manual send path.
    """

    __tablename__ = "prompt_deliveries"
    __table_args__ = (
        UniqueConstraint("user_id", "local_date", "slot", name="uq_delivery_user_date_slot"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    local_date: Mapped[date_type] = mapped_column(Date, index=True)
    slot: Mapped[PromptSlot] = mapped_column(_enum_column(PromptSlot))
    status: Mapped[DeliveryStatus] = mapped_column(
        _enum_column(DeliveryStatus), default=DeliveryStatus.CLAIMED
    )
    source: Mapped[str] = mapped_column(String(16), default="scheduler")
    prompt_ref: Mapped[str | None] = mapped_column(String(64), default=None)
    claimed_at: Mapped[datetime] = mapped_column()
    delivered_at: Mapped[datetime | None] = mapped_column(default=None)
    error: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<PromptDelivery {self.user_id} {self.local_date} {self.slot.value}>"
