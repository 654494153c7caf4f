"""Periodic pruning of the verification and cooldown ledgers."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from threadbot.core.datetime_utils import utc_now
from threadbot.core.logging import get_logger
from threadbot.services.manual_send import cleanup_cooldowns
from threadbot.services.verification_service import CleanupResult, cleanup_verification_data

logger = get_logger(__name__)


async def run_ledger_cleanup(db: AsyncSession, now: datetime | None = None) -> CleanupResult:
    now = now or utc_now()
    result = await cleanup_verification_data(db, now)
    result.cooldowns = await cleanup_cooldowns(db, now)
    await db.commit()

    logger.bind(
        expired_codes=result.expired_codes,
        used_codes=result.used_codes,
        stale_attempts=result.stale_attempts,
        reset_attempts=result.reset_attempts,
        cooldowns=result.cooldowns,
    ).info("ledger_cleanup_completed")
    return result
