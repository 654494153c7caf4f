"""
Scheduled prompt delivery sweep.

Triggered every few minutes per slot (cron endpoint, in-process scheduler or
CLI). Each active user whose local time is inside the slot's send window
gets at most one delivery per local date, enforced by the PromptDelivery
ledger's unique claim.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from zoneinfo import ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from threadbot.config import get_config
from threadbot.core.database import AsyncSessionLocal
from threadbot.core.datetime_utils import (
    is_in_send_window,
    send_window_offset,
    slot_local_date,
    utc_now,
)
from threadbot.core.logging import get_logger
from threadbot.models.bot import BotConfig, PromptSource
from threadbot.models.prompt import DeliveryStatus, PromptDelivery, PromptSlot
from threadbot.services.bot_config_service import get_bot_config, record_prompt_sent
from threadbot.services.notion_service import NotionClient, NotionError, build_notion_client
from threadbot.services.prompt_store import mark_prompt_sent, resolve_prompt_content
from threadbot.services.telegram_service import (
    GatewayTransportError,
    TelegramGateway,
    build_gateway,
    format_prompt_message,
)

logger = get_logger(__name__)

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class UserOutcome:
    """Per-user result of a sweep."""

    user_id: str
    status: str
    reason: str | None = None


@dataclass
class SweepResult:
    """Aggregate result of one sweep for a slot."""

    slot: PromptSlot
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: list[UserOutcome] = field(default_factory=list)

    def add(self, outcome: UserOutcome) -> None:
        self.outcomes.append(outcome)
        self.processed += 1
        if outcome.status == SENT:
            self.sent += 1
        elif outcome.status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def _is_due(config: BotConfig, slot: PromptSlot, now: datetime, window_minutes: int) -> bool:
    """Cheap window check run before a user is queued.

    Configs that cannot be evaluated are queued so the failure is reported.
    """
    try:
        return is_in_send_window(
            config.timezone, config.slot_time(slot.value), now, window_minutes
        )
    except (ZoneInfoNotFoundError, ValueError):
        return True


async def _claim_slot(
    db: AsyncSession, config: BotConfig, slot: PromptSlot, local_date: date, now: datetime
) -> PromptDelivery | None:
    """Insert the ledger row for the slot. None means it was already claimed."""
    delivery = PromptDelivery(
        user_id=config.user_id,
        local_date=local_date,
        slot=slot,
        status=DeliveryStatus.CLAIMED,
        source="scheduler",
        claimed_at=now,
    )
    db.add(delivery)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return None
    return delivery


async def _finish(db: AsyncSession, delivery: PromptDelivery, error: str | None) -> None:
    delivery.status = DeliveryStatus.FAILED if error else DeliveryStatus.SENT
    delivery.error = error
    if error is None:
        delivery.delivered_at = utc_now()
    await db.commit()


async def deliver_to_user(
    db: AsyncSession,
    user_id: str,
    slot: PromptSlot,
    gateway: TelegramGateway,
    now: datetime,
    notion_factory: Callable[[str], NotionClient] = build_notion_client,
) -> UserOutcome | None:
    """
    Run the claim, resolve, send and record sequence for one user.

    Returns None if the user is outside the send window.
    """
    window_minutes = get_config().delivery.window_minutes
    config = await get_bot_config(db, user_id)
    if config is None or not config.is_active:
        return None

    slot_time = config.slot_time(slot.value)
    try:
        offset = send_window_offset(config.timezone, slot_time, now, window_minutes)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.bind(user_id=user_id, timezone=config.timezone).warning("delivery_invalid_config")
        return UserOutcome(user_id, FAILED, f"Invalid schedule configuration: {e}")

    if offset is None:
        return None

    if not config.telegram_chat_id:
        return UserOutcome(user_id, FAILED, "No Telegram chat linked")
    chat_id = config.telegram_chat_id

    local_date = slot_local_date(config.timezone, slot_time, now)
    delivery = await _claim_slot(db, config, slot, local_date, now)
    if delivery is None:
        return UserOutcome(user_id, SKIPPED, f"Already sent {slot.value} prompt for {local_date}")

    try:
        content = await resolve_prompt_content(db, config, local_date, slot, notion_factory)
    except NotionError as e:
        await _finish(db, delivery, str(e))
        return UserOutcome(user_id, FAILED, f"External source error: {e}")

    if content is None:
        reason = f"No {slot.value} prompt found for {local_date.isoformat()}"
        await _finish(db, delivery, reason)
        return UserOutcome(user_id, FAILED, reason)

    delivery.prompt_ref = content.ref
    text = format_prompt_message(
        slot.value, local_date, content.theme, content.body, content.source.value
    )

    try:
        sent = await gateway.send_message(chat_id, text)
    except GatewayTransportError as e:
        await _finish(db, delivery, str(e))
        return UserOutcome(user_id, FAILED, "Telegram unreachable")

    if not sent:
        await _finish(db, delivery, "Telegram rejected the message")
        return UserOutcome(user_id, FAILED, "Telegram rejected the message")

    if content.source == PromptSource.GENERATED:
        await mark_prompt_sent(db, content.ref)
    await record_prompt_sent(db, user_id, slot, local_date, content.ref, now)
    await _finish(db, delivery, None)
    return UserOutcome(user_id, SENT)


async def run_delivery_sweep(
    slot: PromptSlot,
    *,
    now: datetime | None = None,
    gateway: TelegramGateway | None = None,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    notion_factory: Callable[[str], NotionClient] = build_notion_client,
) -> SweepResult:
    """
    Deliver the slot's prompt to every active user inside their send window.

    Users run in parallel with bounded concurrency, each in its own session.
    One user's failure or timeout never affects the others, and this
    function does not raise for per-user errors.
    """
    config = get_config().delivery
    now = now or utc_now()
    gateway = gateway or build_gateway()
    result = SweepResult(slot=slot)
    semaphore = asyncio.Semaphore(config.max_concurrency)

    async with session_factory() as db:
        rows = await db.execute(select(BotConfig).where(BotConfig.is_active.is_(True)))
        active = list(rows.scalars().all())

    # Users outside their window are never queued
    user_ids = [c.user_id for c in active if _is_due(c, slot, now, config.window_minutes)]

    log = logger.bind(slot=slot.value, active_users=len(active), due_users=len(user_ids))
    log.info("delivery_sweep_started")

    async def process(user_id: str) -> UserOutcome | None:
        async with semaphore:
            try:
                async with session_factory() as db:
                    return await asyncio.wait_for(
                        deliver_to_user(db, user_id, slot, gateway, now, notion_factory),
                        timeout=config.per_user_timeout_seconds,
                    )
            except TimeoutError:
                logger.bind(user_id=user_id, slot=slot.value).warning("delivery_user_timeout")
                return UserOutcome(user_id, FAILED, "Timed out")
            except Exception as e:
                logger.bind(user_id=user_id, slot=slot.value, error=str(e)).error(
                    "delivery_user_error"
                )
                return UserOutcome(user_id, FAILED, f"Internal error: {type(e).__name__}")

    tasks = {asyncio.create_task(process(uid)): uid for uid in user_ids}
    if tasks:
        done, pending = await asyncio.wait(tasks, timeout=config.sweep_timeout_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task, user_id in tasks.items():
            if task in pending:
                result.add(UserOutcome(user_id, FAILED, "Sweep time budget exceeded"))
                continue
            outcome = task.result()
            if outcome is not None:
                result.add(outcome)

    log.bind(
        processed=result.processed,
        sent=result.sent,
        failed=result.failed,
        skipped=result.skipped,
    ).info("delivery_sweep_completed")
    for outcome in result.outcomes:
        if outcome.status == FAILED:
            logger.bind(
                user_id=outcome.user_id, slot=slot.value, reason=outcome.reason
            ).warning("delivery_user_failed")

    return result
