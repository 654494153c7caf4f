from fastapi import APIRouter

from threadbot.core.datetime_utils import COMMON_TIMEZONES
from threadbot.core.logging import get_logger
from threadbot.dependencies import CurrentUserId, DBSession
from threadbot.services.bot_config_service import delete_user_data

logger = get_logger(__name__)
router = APIRouter()


@router.get("/timezones")
async def get_timezones() -> dict:
    """
    Get list of common timezones for UI dropdown.

    Returns:
        Dict with common_timezones list
    """
    return {"timezones": COMMON_TIMEZONES}


@router.delete("/me/data")
async def delete_my_data(db: DBSession, user_id: CurrentUserId) -> dict:
    """
    Delete all of the current user's bot data.

    Removes prompts, delivery history, codes, cooldowns, state and config.
    The account itself lives with the auth provider and is untouched.
    """
    counts = await delete_user_data(db, user_id)
    await db.commit()
    return {"ok": True, "deleted": counts}
