"""Rate-limit state for the manual "send now" action."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from threadbot.models.base import Base


class SendCooldown(Base):
    """Send counter for one manual-send key ("send:{user}:{date}:{slot}")."""

    __tablename__ = "send_cooldowns"
    __table_args__ = (UniqueConstraint("user_id", "cooldown_key", name="uq_cooldown_user_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    cooldown_key: Mapped[str] = mapped_column(String(128))
    send_count: Mapped[int] = mapped_column(Integer, default=0)
    window_started_at: Mapped[datetime] = mapped_column()
    last_sent_at: Mapped[datetime | None] = mapped_column(default=None, index=True)

    def __repr__(self) -> str:
        return f"<SendCooldown {self.cooldown_key} count={self.send_count}>"
