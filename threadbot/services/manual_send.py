"""
User-triggered "send now" for a single prompt.

Rate limited per (user, date, slot) key by SendCooldown, independent of the
scheduler. A successful manual send also records the slot in the delivery
ledger so the scheduler will not send it again that day.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from threadbot.config import get_config
from threadbot.core.datetime_utils import utc_now
from threadbot.core.logging import get_logger
from threadbot.models.bot import PromptSource
from threadbot.models.cooldown import SendCooldown
from threadbot.models.prompt import DeliveryStatus, PromptDelivery, PromptSlot
from threadbot.services.bot_config_service import get_bot_config, record_prompt_sent
from threadbot.services.notion_service import NotionError
from threadbot.services.prompt_store import mark_prompt_sent, resolve_prompt_content
from threadbot.services.telegram_service import (
    GatewayTransportError,
    TelegramGateway,
    format_prompt_message,
)

logger = get_logger(__name__)


@dataclass
class CooldownDecision:
    """Whether a send may proceed under the cooldown rules."""

    allowed: bool
    retry_after_seconds: int = 0
    message: str = ""


@dataclass
class ManualSendResult:
    """Outcome of a manual send.

    status is one of: sent, rate_limited, not_linked, no_content, send_failed
    """

    success: bool
    status: str
    message: str
    retry_after_seconds: int | None = None

    @property
    def rate_limited(self) -> bool:
        return self.status == "rate_limited"


def cooldown_key(user_id: str, prompt_date: date, slot: PromptSlot) -> str:
    return f"send:{user_id}:{prompt_date.isoformat()}:{slot.value}"


async def _get_cooldown(db: AsyncSession, user_id: str, key: str) -> SendCooldown | None:
    result = await db.execute(
        select(SendCooldown)
        .where(SendCooldown.user_id == user_id, SendCooldown.cooldown_key == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _ensure_cooldown(
    db: AsyncSession, user_id: str, key: str, now: datetime
) -> SendCooldown:
    row = await _get_cooldown(db, user_id, key)
    if row is not None:
        return row

    row = SendCooldown(user_id=user_id, cooldown_key=key, send_count=0, window_started_at=now)
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent first click created the row; use theirs.
        await db.rollback()
        existing = await _get_cooldown(db, user_id, key)
        if existing is None:
            raise
        return existing
    return row


async def reserve_send(
    db: AsyncSession, user_id: str, key: str, now: datetime | None = None
) -> CooldownDecision:
    """
    Atomically take one send from the key's budget.

    The window holds max_sends_per_window sends and restarts once it is
    window_minutes old. Consecutive sends must be min_interval_seconds apart.
    """
    config = get_config().cooldown
    now = now or utc_now()
    window = timedelta(minutes=config.window_minutes)
    spacing = timedelta(seconds=config.min_interval_seconds)

    row = await _ensure_cooldown(db, user_id, key, now)

    window_expired = SendCooldown.window_started_at <= now - window
    result = await db.execute(
        update(SendCooldown)
        .where(
            SendCooldown.id == row.id,
            or_(SendCooldown.last_sent_at.is_(None), SendCooldown.last_sent_at <= now - spacing),
            or_(window_expired, SendCooldown.send_count < config.max_sends_per_window),
        )
        .values(
            send_count=case((window_expired, 1), else_=SendCooldown.send_count + 1),
            window_started_at=case((window_expired, now), else_=SendCooldown.window_started_at),
            last_sent_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return CooldownDecision(allowed=True)

    row = await _get_cooldown(db, user_id, key)
    assert row is not None

    if row.last_sent_at is not None and row.last_sent_at > now - spacing:
        wait = math.ceil((row.last_sent_at + spacing - now).total_seconds())
        return CooldownDecision(
            allowed=False,
            retry_after_seconds=max(wait, 1),
            message=f"Please wait {max(wait, 1)} seconds before sending again.",
        )

    wait = math.ceil((row.window_started_at + window - now).total_seconds())
    minutes = max(math.ceil(wait / 60), 1)
    return CooldownDecision(
        allowed=False,
        retry_after_seconds=max(wait, 1),
        message=(
            f"Send limit reached ({config.max_sends_per_window} per "
            f"{config.window_minutes} minutes). Try again in {minutes} minutes."
        ),
    )


async def _record_manual_delivery(
    db: AsyncSession,
    user_id: str,
    prompt_date: date,
    slot: PromptSlot,
    prompt_ref: str,
    now: datetime,
) -> None:
    """Upsert the ledger row for the slot to sent."""
    query = select(PromptDelivery).where(
        PromptDelivery.user_id == user_id,
        PromptDelivery.local_date == prompt_date,
        PromptDelivery.slot == slot,
    )
    delivery = (await db.execute(query)).scalar_one_or_none()
    if delivery is None:
        db.add(
            PromptDelivery(
                user_id=user_id,
                local_date=prompt_date,
                slot=slot,
                status=DeliveryStatus.SENT,
                source="manual",
                prompt_ref=prompt_ref,
                claimed_at=now,
                delivered_at=now,
            )
        )
        try:
            await db.flush()
            return
        except IntegrityError:
            # A sweep claimed the slot meanwhile.
            await db.rollback()
            delivery = (await db.execute(query)).scalar_one()

    delivery.status = DeliveryStatus.SENT
    delivery.prompt_ref = prompt_ref
    delivery.delivered_at = now
    delivery.error = None
    await db.flush()


async def send_prompt_now(
    db: AsyncSession,
    user_id: str,
    prompt_date: date,
    slot: PromptSlot,
    gateway: TelegramGateway,
    now: datetime | None = None,
) -> ManualSendResult:
    """
    Send the prompt for a date and slot right away.

    The cooldown reservation is committed before sending, so a failed send
    still counts against the budget.
    """
    now = now or utc_now()
    log = logger.bind(user_id=user_id, date=prompt_date.isoformat(), slot=slot.value)

    config = await get_bot_config(db, user_id)
    if config is None or not config.telegram_chat_id:
        return ManualSendResult(
            success=False,
            status="not_linked",
            message="Link your Telegram account before sending prompts.",
        )
    chat_id = config.telegram_chat_id

    decision = await reserve_send(db, user_id, cooldown_key(user_id, prompt_date, slot), now)
    await db.commit()
    if not decision.allowed:
        log.bind(retry_after=decision.retry_after_seconds).info("manual_send_rate_limited")
        return ManualSendResult(
            success=False,
            status="rate_limited",
            message=decision.message,
            retry_after_seconds=decision.retry_after_seconds,
        )

    # Reload in case the reservation rolled back and expired the instance
    config = await get_bot_config(db, user_id)
    if config is None:
        return ManualSendResult(
            success=False,
            status="not_linked",
            message="Link your Telegram account before sending prompts.",
        )

    try:
        content = await resolve_prompt_content(db, config, prompt_date, slot)
    except NotionError as e:
        log.bind(error=str(e)).warning("manual_send_content_error")
        content = None

    if content is None:
        return ManualSendResult(
            success=False,
            status="no_content",
            message=f"No {slot.value} prompt found for {prompt_date.isoformat()}",
        )

    text = format_prompt_message(
        slot.value, prompt_date, content.theme, content.body, content.source.value
    )
    try:
        sent = await gateway.send_message(chat_id, text)
    except GatewayTransportError:
        sent = False

    if not sent:
        log.warning("manual_send_failed")
        return ManualSendResult(
            success=False,
            status="send_failed",
            message="Telegram did not accept the message. Please try again later.",
        )

    await _record_manual_delivery(db, user_id, prompt_date, slot, content.ref, now)
    if content.source == PromptSource.GENERATED:
        await mark_prompt_sent(db, content.ref)
    await record_prompt_sent(db, user_id, slot, prompt_date, content.ref, now)

    log.info("manual_send_succeeded")
    return ManualSendResult(
        success=True,
        status="sent",
        message=f"{slot.value.capitalize()} prompt sent to Telegram.",
    )


async def cleanup_cooldowns(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete cooldown rows untouched for the retention period."""
    config = get_config().cooldown
    now = now or utc_now()
    cutoff = now - timedelta(days=config.retention_days)
    result = await db.execute(
        delete(SendCooldown).where(
            or_(
                SendCooldown.last_sent_at < cutoff,
                SendCooldown.last_sent_at.is_(None) & (SendCooldown.window_started_at < cutoff),
            )
        )
    )
    return result.rowcount
