"""Telegram endpoints: the shared inbound webhook and account linking."""

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import ValidationError

from threadbot.core.datetime_utils import is_expired
from threadbot.core.logging import get_logger
from threadbot.core.rate_limit import limiter, verification_request_limit
from threadbot.core.security import secrets_match
from threadbot.dependencies import AppSettings, CurrentUserId, DBSession, Gateway
from threadbot.schemas.telegram import (
    LinkCodeResponse,
    LinkRequest,
    LinkStatusResponse,
    TelegramUpdate,
    WebhookSetupResponse,
)
from threadbot.services.bot_config_service import get_bot_config, setup_webhook
from threadbot.services.inbound_router import handle_update
from threadbot.services.verification_service import (
    CodeGenerationError,
    create_verification_code,
    get_latest_code,
)

logger = get_logger(__name__)
router = APIRouter()


@router.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    db: DBSession,
    gateway: Gateway,
    settings: AppSettings,
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
) -> dict[str, bool]:
    """
    Shared inbound webhook for every user's chat.

    Always acknowledges with 200 once authenticated; internal errors are
    logged and never surfaced to Telegram, which would otherwise retry.
    """
    secret = settings.telegram_webhook_secret
    if secret and not secrets_match(x_telegram_bot_api_secret_token, secret):
        logger.warning("telegram_webhook_unauthorized")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    try:
        update = TelegramUpdate.model_validate(await request.json())
    except (ValueError, ValidationError):
        logger.info("telegram_webhook_unparseable_update")
        return {"ok": True}

    try:
        outcome = await handle_update(db, update, gateway)
        await db.commit()
        logger.bind(
            update_id=update.update_id,
            action=outcome.action,
            user_id=outcome.user_id,
        ).debug("telegram_webhook_handled")
    except Exception as e:
        await db.rollback()
        logger.bind(update_id=update.update_id, error=str(e)).error("telegram_webhook_error")

    return {"ok": True}


@router.post("/telegram/link", response_model=LinkCodeResponse)
@limiter.limit(verification_request_limit)
async def create_link_code(
    request: Request,
    db: DBSession,
    user_id: CurrentUserId,
    settings: AppSettings,
    body: LinkRequest | None = None,
) -> LinkCodeResponse:
    """
    Issue a 6-digit code the user sends to the bot to link their chat.

    Any previous code for the user stops working.
    """
    try:
        code = await create_verification_code(db, user_id, body.timezone if body else None)
    except CodeGenerationError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not generate a verification code, please retry",
        ) from e

    username = settings.telegram_bot_username
    return LinkCodeResponse(
        code=code.code,
        expires_at=code.expires_at,
        bot_username=username,
        bot_link=f"https://t.me/{username}",
    )


@router.get("/telegram/status", response_model=LinkStatusResponse)
async def link_status(db: DBSession, user_id: CurrentUserId) -> LinkStatusResponse:
    """Link status, polled by the client after showing a code."""
    config = await get_bot_config(db, user_id)
    if config and config.telegram_chat_id:
        return LinkStatusResponse(linked=True, chat_id=config.telegram_chat_id)

    code = await get_latest_code(db, user_id)
    if code and code.used_at is None and not is_expired(code.expires_at):
        return LinkStatusResponse(linked=False, pending_code=True, expires_at=code.expires_at)

    return LinkStatusResponse(linked=False)


@router.post("/telegram/webhook/setup", response_model=WebhookSetupResponse)
async def register_webhook(
    db: DBSession,
    user_id: CurrentUserId,
    gateway: Gateway,
) -> WebhookSetupResponse:
    """Register the shared webhook with Telegram and record the result."""
    result = await setup_webhook(db, user_id, gateway)
    return WebhookSetupResponse(success=result.success, url=result.url, error=result.error)
