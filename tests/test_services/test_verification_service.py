"""Tests for the verification code ledger."""

from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from threadbot.models.bot import BotState
from threadbot.models.verification import VerificationAttempt, VerificationCode
from threadbot.services.verification_service import (
    CodeGenerationError,
    cleanup_verification_data,
    consume_code,
    create_verification_code,
    find_active_code,
    get_latest_code,
    is_chat_locked,
    register_failed_attempt,
    reset_attempts,
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 2, 12, 0)
GENERATOR = "threadbot.services.verification_service.generate_verification_code"


class TestCreateVerificationCode:
    """Tests for create_verification_code."""

    async def test_issues_code_with_ten_minute_expiry(self, db_session):
        code = await create_verification_code(db_session, "user-1", now=NOW)

        assert len(code.code) == 6 and code.code.isdigit()
        assert code.expires_at == NOW + timedelta(minutes=10)
        assert code.used_at is None

    async def test_regeneration_invalidates_previous_code(self, db_session):
        """Only the most recent code for a user can link."""
        with patch(GENERATOR, side_effect=["111111", "222222"]):
            await create_verification_code(db_session, "user-1", now=NOW)
            await create_verification_code(db_session, "user-1", now=NOW + timedelta(minutes=1))

        later = NOW + timedelta(minutes=2)
        assert await find_active_code(db_session, "111111", later) is None
        found = await find_active_code(db_session, "222222", later)
        assert found is not None and found.user_id == "user-1"

        count = await db_session.scalar(
            select(func.count()).select_from(VerificationCode).where(
                VerificationCode.user_id == "user-1"
            )
        )
        assert count == 1

    async def test_redraws_on_collision_with_active_code(self, db_session, code_factory):
        await code_factory("other-user", code="111111", created_at=NOW)

        with patch(GENERATOR, side_effect=["111111", "333333"]):
            code = await create_verification_code(db_session, "user-1", now=NOW)

        assert code.code == "333333"

    async def test_gives_up_after_repeated_collisions(self, db_session, code_factory):
        await code_factory("other-user", code="111111", created_at=NOW)

        with patch(GENERATOR, return_value="111111"):
            with pytest.raises(CodeGenerationError):
                await create_verification_code(db_session, "user-1", now=NOW)

    async def test_keeps_valid_timezone_drops_invalid(self, db_session):
        good = await create_verification_code(db_session, "user-1", "Europe/Paris", now=NOW)
        assert good.timezone == "Europe/Paris"

        bad = await create_verification_code(db_session, "user-2", "Not/AZone", now=NOW)
        assert bad.timezone is None

    async def test_clears_prompt_pointer(self, db_session):
        state = BotState(
            user_id="user-1",
            last_prompt_type="morning",
            last_prompt_date=date(2026, 3, 1),
            last_prompt_ref="some-prompt",
        )
        db_session.add(state)
        await db_session.flush()

        await create_verification_code(db_session, "user-1", now=NOW)
        await db_session.refresh(state)

        assert state.last_prompt_ref is None
        assert state.last_prompt_type is None

    async def test_get_latest_code(self, db_session):
        created = await create_verification_code(db_session, "user-1", now=NOW)
        latest = await get_latest_code(db_session, "user-1")
        assert latest is not None and latest.id == created.id
        assert await get_latest_code(db_session, "nobody") is None


class TestFindActiveCode:
    """Tests for code resolution."""

    async def test_literal_code_matches_exactly(self, db_session, code_factory):
        await code_factory("user-a", code="111111", created_at=NOW)
        await code_factory("user-b", code="222222", created_at=NOW + timedelta(minutes=1))

        found = await find_active_code(db_session, "222222", NOW + timedelta(minutes=2))
        assert found.user_id == "user-b"

        found = await find_active_code(db_session, "111111", NOW + timedelta(minutes=2))
        assert found.user_id == "user-a"

    async def test_literal_code_not_found(self, db_session, code_factory):
        await code_factory("user-a", code="111111", created_at=NOW)
        assert await find_active_code(db_session, "999999", NOW) is None

    async def test_greeting_resolves_most_recent_pending_code(self, db_session, code_factory):
        await code_factory("user-a", code="111111", created_at=NOW)
        await code_factory("user-b", code="222222", created_at=NOW + timedelta(minutes=3))

        found = await find_active_code(db_session, None, NOW + timedelta(minutes=4))
        assert found.user_id == "user-b"

    async def test_greeting_skips_used_and_expired_codes(self, db_session, code_factory):
        await code_factory("user-a", code="111111", created_at=NOW)
        await code_factory(
            "user-b", code="222222", created_at=NOW + timedelta(minutes=1), used_at=NOW
        )
        await code_factory(
            "user-c", code="333333", created_at=NOW + timedelta(minutes=2), ttl_minutes=0
        )

        found = await find_active_code(db_session, None, NOW + timedelta(minutes=5))
        assert found.user_id == "user-a"

    async def test_expired_code_is_not_active(self, db_session, code_factory):
        await code_factory("user-a", code="111111", created_at=NOW)
        assert await find_active_code(db_session, "111111", NOW + timedelta(minutes=11)) is None


class TestConsumeCode:
    """Tests for consume_code."""

    async def test_consumption_is_idempotent(self, db_session, code_factory):
        code = await code_factory("user-a", code="111111", created_at=NOW)
        at = NOW + timedelta(minutes=1)

        assert await consume_code(db_session, code, "chat-1", at) is True
        assert await consume_code(db_session, code, "chat-2", at) is False

        await db_session.refresh(code)
        assert code.chat_id == "chat-1"
        assert code.used_at == at
        assert await find_active_code(db_session, "111111", at) is None

    async def test_expired_code_cannot_be_consumed(self, db_session, code_factory):
        code = await code_factory("user-a", code="111111", created_at=NOW)
        assert await consume_code(db_session, code, "chat-1", NOW + timedelta(minutes=11)) is False


class TestAttemptLockout:
    """Tests for brute-force protection."""

    async def test_locks_after_five_failures(self, db_session):
        for i in range(4):
            await register_failed_attempt(db_session, "chat-1", NOW + timedelta(seconds=i))
        assert await is_chat_locked(db_session, "chat-1", NOW + timedelta(seconds=5)) is False

        attempt = await register_failed_attempt(db_session, "chat-1", NOW + timedelta(seconds=5))
        assert attempt.attempt_count == 5
        assert await is_chat_locked(db_session, "chat-1", NOW + timedelta(seconds=6)) is True

    async def test_lock_expires(self, db_session):
        for i in range(5):
            await register_failed_attempt(db_session, "chat-1", NOW + timedelta(seconds=i))

        assert await is_chat_locked(db_session, "chat-1", NOW + timedelta(minutes=61)) is False

    async def test_retry_when_lock_expires_starts_fresh(self, db_session):
        for i in range(5):
            await register_failed_attempt(db_session, "chat-1", NOW + timedelta(seconds=i))
        unlocked_at = NOW + timedelta(seconds=4, minutes=60)
        assert await is_chat_locked(db_session, "chat-1", unlocked_at) is False

        attempt = await register_failed_attempt(db_session, "chat-1", unlocked_at)

        assert attempt.attempt_count == 1
        assert await is_chat_locked(db_session, "chat-1", unlocked_at) is False

    async def test_counter_resets_after_quiet_period(self, db_session):
        for i in range(3):
            await register_failed_attempt(db_session, "chat-1", NOW + timedelta(seconds=i))

        attempt = await register_failed_attempt(db_session, "chat-1", NOW + timedelta(hours=2))
        assert attempt.attempt_count == 1

    async def test_reset_attempts(self, db_session):
        await register_failed_attempt(db_session, "chat-1", NOW)
        await reset_attempts(db_session, "chat-1")

        remaining = await db_session.scalar(select(func.count()).select_from(VerificationAttempt))
        assert remaining == 0

    async def test_unknown_chat_is_not_locked(self, db_session):
        assert await is_chat_locked(db_session, "never-seen", NOW) is False


class TestCleanupVerificationData:
    """Tests for cleanup_verification_data."""

    async def test_removes_expired_and_old_used_codes(self, db_session, code_factory):
        await code_factory("expired", code="111111", created_at=NOW - timedelta(hours=1))
        await code_factory(
            "old-used",
            code="222222",
            created_at=NOW - timedelta(days=2),
            used_at=NOW - timedelta(days=2),
        )
        await code_factory(
            "recent-used",
            code="333333",
            created_at=NOW - timedelta(hours=1),
            used_at=NOW - timedelta(hours=1),
        )
        await code_factory("pending", code="444444", created_at=NOW - timedelta(minutes=1))

        result = await cleanup_verification_data(db_session, NOW)

        assert result.expired_codes == 1
        assert result.used_codes == 1
        remaining = (await db_session.execute(select(VerificationCode.user_id))).scalars().all()
        assert sorted(remaining) == ["pending", "recent-used"]

    async def test_removes_stale_attempts_and_resets_counters(self, db_session):
        db_session.add_all(
            [
                VerificationAttempt(
                    chat_id="stale", attempt_count=2, last_attempt_at=NOW - timedelta(days=8)
                ),
                VerificationAttempt(
                    chat_id="quiet", attempt_count=3, last_attempt_at=NOW - timedelta(hours=2)
                ),
                VerificationAttempt(
                    chat_id="locked",
                    attempt_count=5,
                    last_attempt_at=NOW - timedelta(minutes=10),
                    locked_until=NOW + timedelta(minutes=50),
                ),
            ]
        )
        await db_session.flush()

        result = await cleanup_verification_data(db_session, NOW)

        assert result.stale_attempts == 1
        assert result.reset_attempts == 1
        assert await is_chat_locked(db_session, "locked", NOW) is True
