from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from threadbot.config import Settings, get_settings
from threadbot.core.database import AsyncSessionLocal, get_db
from threadbot.core.security import secrets_match, verify_user_signature
from threadbot.services.telegram_service import TelegramGateway, build_gateway

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that needs one session per task (sweeps)."""
    return AsyncSessionLocal


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


def get_gateway() -> TelegramGateway:
    """Gateway for the shared bot."""
    return build_gateway()


Gateway = Annotated[TelegramGateway, Depends(get_gateway)]


async def get_current_user_id_optional(
    settings: AppSettings,
    x_user_id: str | None = Header(default=None),
    x_user_signature: str | None = Header(default=None),
) -> str | None:
    """
    Get the authenticated user ID, None if missing or not signed.

    The upstream auth layer forwards the user ID together with an HMAC of it
    keyed by SECRET_KEY.
    """
    if not x_user_id or not x_user_signature:
        return None
    if not verify_user_signature(x_user_id, x_user_signature, settings.secret_key):
        return None
    return x_user_id


async def get_current_user_id(
    user_id: str | None = Depends(get_current_user_id_optional),
) -> str:
    """Get the current user ID, raise 401 if not authenticated."""
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user_id


async def verify_cron_secret(
    settings: AppSettings,
    x_cron_secret: str | None = Header(default=None),
) -> None:
    """Reject cron calls without the configured shared secret."""
    if not settings.cron_secret or not secrets_match(x_cron_secret, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


# Type aliases for authenticated endpoints
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
CronAuth = Depends(verify_cron_secret)
