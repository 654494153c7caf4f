"""
Verification code ledger for linking a Telegram chat to an account.

A code is pending until it is consumed (used) or its expiry passes
(expired). Consumption is a single conditional UPDATE so two chats
racing for the same code cannot both win.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from threadbot.config import get_config
from threadbot.core.datetime_utils import is_valid_timezone, utc_now
from threadbot.core.logging import get_logger
from threadbot.core.security import generate_verification_code
from threadbot.models.bot import BotState
from threadbot.models.verification import VerificationAttempt, VerificationCode

logger = get_logger(__name__)


class CodeGenerationError(Exception):
    """Could not draw a code that is unique among active codes."""


@dataclass
class CleanupResult:
    """Rows removed or reset by a ledger cleanup."""

    expired_codes: int = 0
    used_codes: int = 0
    stale_attempts: int = 0
    reset_attempts: int = 0
    cooldowns: int = 0


def _active(now: datetime):
    return (VerificationCode.used_at.is_(None), VerificationCode.expires_at > now)


async def _code_in_use(db: AsyncSession, code: str, now: datetime) -> bool:
    result = await db.execute(
        select(VerificationCode.id).where(VerificationCode.code == code, *_active(now)).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def create_verification_code(
    db: AsyncSession,
    user_id: str,
    timezone: str | None = None,
    now: datetime | None = None,
) -> VerificationCode:
    """
    Issue a fresh code for a user, invalidating any earlier ones.

    Also clears the user's current-prompt pointer so replies cannot land on
    a prompt from a previous linking.

    Args:
        db: Database session
        user_id: Account requesting the link
        timezone: Browser-detected IANA timezone, dropped if invalid
        now: Reference time (naive UTC)

    Raises:
        CodeGenerationError: If every drawn code collided with an active one
    """
    config = get_config().verification
    now = now or utc_now()

    await db.execute(delete(VerificationCode).where(VerificationCode.user_id == user_id))
    await db.execute(
        update(BotState)
        .where(BotState.user_id == user_id)
        .values(last_prompt_ref=None, last_prompt_type=None, last_prompt_date=None)
        .execution_options(synchronize_session=False)
    )

    for _ in range(config.max_generation_attempts):
        candidate = generate_verification_code()
        if not await _code_in_use(db, candidate, now):
            break
    else:
        logger.bind(user_id=user_id).error("verification_code_generation_exhausted")
        raise CodeGenerationError("Could not generate a unique verification code")

    if timezone and not is_valid_timezone(timezone):
        logger.bind(user_id=user_id, timezone=timezone).warning("verification_timezone_dropped")
        timezone = None

    code = VerificationCode(
        user_id=user_id,
        code=candidate,
        timezone=timezone,
        created_at=now,
        expires_at=now + timedelta(minutes=config.code_ttl_minutes),
    )
    db.add(code)
    await db.flush()

    logger.bind(user_id=user_id, expires_at=code.expires_at.isoformat()).info(
        "verification_code_created"
    )
    return code


async def find_active_code(
    db: AsyncSession,
    code: str | None = None,
    now: datetime | None = None,
) -> VerificationCode | None:
    """
    Resolve a pending code.

    With a literal code, only a row with that exact value matches (oldest
    first if values collide). Without one, the most recently created
    pending code is returned.
    """
    now = now or utc_now()
    query = select(VerificationCode).where(*_active(now))
    if code is not None:
        query = query.where(VerificationCode.code == code).order_by(
            VerificationCode.created_at.asc()
        )
    else:
        query = query.order_by(VerificationCode.created_at.desc())

    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def consume_code(
    db: AsyncSession,
    code: VerificationCode,
    chat_id: str,
    now: datetime | None = None,
) -> bool:
    """
    Mark a code used by a chat.

    Returns:
        True only for the single caller whose update took effect
    """
    now = now or utc_now()
    result = await db.execute(
        update(VerificationCode)
        .where(
            VerificationCode.id == code.id,
            VerificationCode.used_at.is_(None),
            VerificationCode.expires_at > now,
        )
        .values(used_at=now, chat_id=chat_id)
        .execution_options(synchronize_session=False)
    )
    consumed = result.rowcount == 1
    if consumed:
        code.used_at = now
        code.chat_id = chat_id
    return consumed


async def get_latest_code(db: AsyncSession, user_id: str) -> VerificationCode | None:
    result = await db.execute(
        select(VerificationCode)
        .where(VerificationCode.user_id == user_id)
        .order_by(VerificationCode.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# =============================================================================
# Brute-force protection
# =============================================================================


async def _get_attempt(db: AsyncSession, chat_id: str) -> VerificationAttempt | None:
    result = await db.execute(
        select(VerificationAttempt).where(VerificationAttempt.chat_id == chat_id)
    )
    return result.scalar_one_or_none()


async def is_chat_locked(db: AsyncSession, chat_id: str, now: datetime | None = None) -> bool:
    now = now or utc_now()
    attempt = await _get_attempt(db, chat_id)
    return bool(attempt and attempt.locked_until and attempt.locked_until > now)


async def register_failed_attempt(
    db: AsyncSession, chat_id: str, now: datetime | None = None
) -> VerificationAttempt:
    """Count a failed code attempt and lock the chat once the limit is hit."""
    config = get_config().verification
    now = now or utc_now()

    attempt = await _get_attempt(db, chat_id)
    if attempt is None:
        attempt = VerificationAttempt(chat_id=chat_id, attempt_count=0, last_attempt_at=now)
        db.add(attempt)
    elif attempt.last_attempt_at <= now - timedelta(minutes=config.attempt_reset_minutes):
        attempt.attempt_count = 0
        attempt.locked_until = None

    attempt.attempt_count += 1
    attempt.last_attempt_at = now

    if attempt.attempt_count >= config.max_failed_attempts:
        attempt.locked_until = now + timedelta(minutes=config.lockout_minutes)
        logger.bind(chat_id=chat_id, attempts=attempt.attempt_count).warning(
            "verification_chat_locked"
        )

    await db.flush()
    return attempt


async def reset_attempts(db: AsyncSession, chat_id: str) -> None:
    await db.execute(delete(VerificationAttempt).where(VerificationAttempt.chat_id == chat_id))


async def cleanup_verification_data(
    db: AsyncSession, now: datetime | None = None
) -> CleanupResult:
    """Delete expired and old used codes and stale attempt rows."""
    config = get_config().verification
    now = now or utc_now()
    result = CleanupResult()

    expired = await db.execute(
        delete(VerificationCode).where(
            VerificationCode.used_at.is_(None), VerificationCode.expires_at <= now
        )
    )
    result.expired_codes = expired.rowcount

    used = await db.execute(
        delete(VerificationCode).where(
            VerificationCode.used_at.is_not(None),
            VerificationCode.used_at < now - timedelta(days=1),
        )
    )
    result.used_codes = used.rowcount

    stale = await db.execute(
        delete(VerificationAttempt).where(
            VerificationAttempt.last_attempt_at < now - timedelta(days=7)
        )
    )
    result.stale_attempts = stale.rowcount

    reset = await db.execute(
        update(VerificationAttempt)
        .where(
            VerificationAttempt.last_attempt_at
            <= now - timedelta(minutes=config.attempt_reset_minutes),
            VerificationAttempt.attempt_count > 0,
            or_(VerificationAttempt.locked_until.is_(None), VerificationAttempt.locked_until <= now),
        )
        .values(attempt_count=0, locked_until=None)
        .execution_options(synchronize_session=False)
    )
    result.reset_attempts = reset.rowcount

    return result
