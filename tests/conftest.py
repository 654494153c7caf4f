"""
Pytest configuration and fixtures for Threadbot tests.

Provides:
- Async test database with SQLite
- A fake Telegram gateway that records outbound messages
- Test client for API testing
- Factory fixtures for creating test data
"""

import os

# Settings are read at import time by the database module
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:test-token"
os.environ["TELEGRAM_BOT_USERNAME"] = "ThreadbotTestBot"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BASE_URL"] = "http://localhost:8000"

import uuid  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402
from datetime import date, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import StaticPool  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from threadbot.core.database import get_db  # noqa: E402
from threadbot.core.security import sign_user_id  # noqa: E402
from threadbot.dependencies import get_gateway, get_session_factory  # noqa: E402
from threadbot.main import app  # noqa: E402
from threadbot.models import Base  # noqa: E402
from threadbot.models.bot import BotConfig, BotState, PromptSource  # noqa: E402
from threadbot.models.prompt import PromptRecord, PromptSlot, PromptStatus  # noqa: E402
from threadbot.models.verification import VerificationCode  # noqa: E402
from threadbot.services.telegram_service import (  # noqa: E402
    GatewayTransportError,
    TelegramGateway,
)

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeGateway(TelegramGateway):
    """Records sent messages instead of calling Telegram."""

    def __init__(self, accept: bool = True, fail_chats: set[str] | None = None) -> None:
        super().__init__(bot_token="123456:test-token")
        self.accept = accept
        self.fail_chats = fail_chats or set()
        self.unreachable = False
        self.sent: list[tuple[str, str]] = []

    async def send_message(self, chat_id: str, text: str, escape: bool = True) -> bool:
        if self.unreachable:
            raise GatewayTransportError("sendMessage: ConnectTimeout")
        if not self.accept or chat_id in self.fail_chats:
            return False
        self.sent.append((chat_id, text))
        return True

    def messages_to(self, chat_id: str) -> list[str]:
        return [text for cid, text in self.sent if cid == chat_id]


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, used where code opens its own sessions."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, session_maker, gateway: FakeGateway
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and gateway overrides."""
    from threadbot.core.rate_limit import limiter

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_session_factory] = lambda: session_maker

    # Reset rate limiter storage before each test
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers_for(user_id: str) -> dict[str, str]:
    """Headers an upstream auth gateway would attach for a user."""
    return {"X-User-Id": user_id, "X-User-Signature": sign_user_id(user_id)}


@pytest.fixture
def auth_headers():
    return auth_headers_for


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def bot_config_factory(db_session: AsyncSession):
    """Factory for creating linked, active bot configs."""

    async def _create(
        user_id: str | None = None,
        chat_id: str | None = None,
        timezone: str = "UTC",
        morning_time: str = "09:00",
        evening_time: str = "18:00",
        is_active: bool = True,
        prompt_source: PromptSource = PromptSource.GENERATED,
        linked: bool = True,
    ) -> BotConfig:
        user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
        if linked and chat_id is None:
            chat_id = str(uuid.uuid4().int % 10**9)

        config = BotConfig(
            user_id=user_id,
            timezone=timezone,
            morning_time=morning_time,
            evening_time=evening_time,
            is_active=is_active,
            telegram_chat_id=chat_id if linked else None,
            prompt_source=prompt_source,
        )
        db_session.add(config)
        db_session.add(BotState(user_id=user_id))
        await db_session.flush()
        return config

    return _create


@pytest_asyncio.fixture
async def prompt_factory(db_session: AsyncSession):
    """Factory for creating stored prompts."""

    async def _create(
        user_id: str,
        on_date: date,
        slot: PromptSlot = PromptSlot.MORNING,
        prompts: list[str] | None = None,
        theme: str = "Gratitude",
        status: PromptStatus = PromptStatus.SCHEDULED,
    ) -> PromptRecord:
        record = PromptRecord(
            user_id=user_id,
            date=on_date,
            slot=slot,
            name=f"{slot.value} {on_date.isoformat()}",
            theme=theme,
            prompts=prompts or ["What went well today?", "What will you try tomorrow?"],
            status=status,
        )
        db_session.add(record)
        await db_session.flush()
        return record

    return _create


@pytest_asyncio.fixture
async def code_factory(db_session: AsyncSession):
    """Factory for inserting verification codes directly."""

    async def _create(
        user_id: str,
        code: str = "123456",
        created_at: datetime | None = None,
        ttl_minutes: int = 10,
        used_at: datetime | None = None,
        timezone: str | None = None,
    ) -> VerificationCode:
        created_at = created_at or datetime(2026, 3, 2, 12, 0)
        row = VerificationCode(
            user_id=user_id,
            code=code,
            created_at=created_at,
            expires_at=created_at + timedelta(minutes=ttl_minutes),
            used_at=used_at,
            timezone=timezone,
        )
        db_session.add(row)
        await db_session.flush()
        return row

    return _create
