from fastapi import APIRouter, HTTPException, status

from threadbot.dependencies import CurrentUserId, DBSession
from threadbot.models.bot import BotConfig
from threadbot.schemas.bot_config import BotConfigResponse, BotConfigUpdate
from threadbot.services.bot_config_service import BotConfigError, get_bot_config, save_bot_config

router = APIRouter()


def _to_response(config: BotConfig) -> BotConfigResponse:
    return BotConfigResponse(
        user_id=config.user_id,
        timezone=config.timezone,
        morning_time=config.morning_time,
        evening_time=config.evening_time,
        is_active=config.is_active,
        prompt_source=config.prompt_source,
        telegram_linked=config.telegram_chat_id is not None,
        notion_database_id=config.notion_database_id,
        has_notion_token=bool(config.notion_token),
        last_webhook_status=config.last_webhook_status,
        last_webhook_error=config.last_webhook_error,
    )


@router.get("/bot-config", response_model=BotConfigResponse)
async def read_bot_config(db: DBSession, user_id: CurrentUserId) -> BotConfigResponse:
    """Get the current user's delivery settings."""
    config = await get_bot_config(db, user_id)
    if not config:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Bot not configured yet",
        )
    return _to_response(config)


@router.put("/bot-config", response_model=BotConfigResponse)
async def update_bot_config(
    data: BotConfigUpdate,
    db: DBSession,
    user_id: CurrentUserId,
) -> BotConfigResponse:
    """
    Create or update delivery settings.

    Timezone and times are validated by the request schema.
    """
    try:
        config = await save_bot_config(db, user_id, data)
    except BotConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
    await db.commit()
    return _to_response(config)
