"""Telegram account-linking codes and per-chat attempt tracking."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from threadbot.models.base import Base


class VerificationCode(Base):
    """One-time 6-digit code binding a user account to a Telegram chat.

    pending: used_at is NULL and expires_at is in the future
    used: used_at is set (chat_id holds the bound chat)
    expired: used_at is NULL and expires_at has passed
    """

    __tablename__ = "telegram_verification_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    code: Mapped[str] = mapped_column(String(6), index=True)
    chat_id: Mapped[str | None] = mapped_column(String(32), default=None)
    timezone: Mapped[str | None] = mapped_column(String(64), default=None)
    expires_at: Mapped[datetime] = mapped_column(index=True)
    used_at: Mapped[datetime | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column()

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    def __repr__(self) -> str:
        return f"<VerificationCode user={self.user_id} used={self.is_used}>"


class VerificationAttempt(Base):
    """Failed code attempts per chat, used to lock out brute-forcing."""

    __tablename__ = "verification_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime] = mapped_column()
    locked_until: Mapped[datetime | None] = mapped_column(default=None)

    def __repr__(self) -> str:
        return f"<VerificationAttempt chat={self.chat_id} count={self.attempt_count}>"
