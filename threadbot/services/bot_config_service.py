"""
Per-user bot configuration: settings, chat binding, webhook health and
data deletion.
"""

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from threadbot.config import get_config
from threadbot.core.datetime_utils import utc_now
from threadbot.core.logging import get_logger
from threadbot.models.bot import BotConfig, BotState, PromptSource, WebhookStatus
from threadbot.models.cooldown import SendCooldown
from threadbot.models.prompt import PromptDelivery, PromptRecord, PromptSlot
from threadbot.models.verification import VerificationCode
from threadbot.schemas.bot_config import BotConfigUpdate
from threadbot.services.prompt_store import has_prompts
from threadbot.services.telegram_service import (
    GatewayTransportError,
    InvalidWebhookSecretError,
    TelegramGateway,
)

logger = get_logger(__name__)


class BotConfigError(ValueError):
    """Settings are inconsistent (e.g. external source without credentials)."""


@dataclass
class WebhookSetupResult:
    """Outcome of registering the shared webhook."""

    success: bool
    url: str
    error: str | None = None


async def get_bot_config(db: AsyncSession, user_id: str) -> BotConfig | None:
    result = await db.execute(select(BotConfig).where(BotConfig.user_id == user_id))
    return result.scalar_one_or_none()


async def get_bot_config_by_chat(db: AsyncSession, chat_id: str) -> BotConfig | None:
    result = await db.execute(select(BotConfig).where(BotConfig.telegram_chat_id == chat_id))
    return result.scalar_one_or_none()


async def get_bot_state(db: AsyncSession, user_id: str) -> BotState | None:
    result = await db.execute(select(BotState).where(BotState.user_id == user_id))
    return result.scalar_one_or_none()


async def ensure_bot_state(db: AsyncSession, user_id: str) -> BotState:
    state = await get_bot_state(db, user_id)
    if state is None:
        state = BotState(user_id=user_id)
        db.add(state)
        await db.flush()
    return state


async def record_prompt_sent(
    db: AsyncSession,
    user_id: str,
    slot: PromptSlot,
    local_date: date,
    prompt_ref: str,
    now: datetime | None = None,
) -> BotState:
    """Point the user's state at the prompt just delivered."""
    state = await ensure_bot_state(db, user_id)
    state.last_prompt_type = slot.value
    state.last_prompt_date = local_date
    state.last_prompt_sent_at = now or utc_now()
    state.last_prompt_ref = prompt_ref
    await db.flush()
    return state


async def save_bot_config(db: AsyncSession, user_id: str, data: BotConfigUpdate) -> BotConfig:
    """
    Create or update a user's delivery settings.

    Only fields present (and non-null) in the request are changed.

    Raises:
        BotConfigError: If activating the external source without Notion credentials
    """
    defaults = get_config().bot_defaults
    config = await get_bot_config(db, user_id)
    if config is None:
        config = BotConfig(
            user_id=user_id,
            timezone=defaults.timezone,
            morning_time=defaults.morning_time,
            evening_time=defaults.evening_time,
            is_active=False,
            prompt_source=PromptSource.GENERATED,
        )
        db.add(config)

    for field_name, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(config, field_name, value)

    if (
        config.is_active
        and config.prompt_source == PromptSource.EXTERNAL
        and not (config.notion_token and config.notion_database_id)
    ):
        raise BotConfigError("Notion token and database ID are required for the Notion source")

    await db.flush()
    logger.bind(user_id=user_id, is_active=config.is_active).info("bot_config_saved")
    return config


async def link_chat(
    db: AsyncSession,
    user_id: str,
    chat_id: str,
    timezone: str | None = None,
) -> BotConfig:
    """
    Bind a chat to a user's config, creating the config if needed.

    The chat is removed from any other account first. The bot is switched
    on with generated prompts only if the user already has prompts.
    """
    await db.execute(
        update(BotConfig)
        .where(BotConfig.telegram_chat_id == chat_id, BotConfig.user_id != user_id)
        .values(telegram_chat_id=None, is_active=False)
        .execution_options(synchronize_session=False)
    )

    defaults = get_config().bot_defaults
    config = await get_bot_config(db, user_id)
    if config is None:
        config = BotConfig(
            user_id=user_id,
            timezone=timezone or defaults.timezone,
            morning_time=defaults.morning_time,
            evening_time=defaults.evening_time,
            is_active=False,
            prompt_source=PromptSource.GENERATED,
        )
        db.add(config)

    config.telegram_chat_id = chat_id
    if await has_prompts(db, user_id):
        config.is_active = True
        config.prompt_source = PromptSource.GENERATED

    await db.flush()
    await ensure_bot_state(db, user_id)

    logger.bind(user_id=user_id, chat_id=chat_id, is_active=config.is_active).info(
        "telegram_chat_linked"
    )
    return config


def webhook_url() -> str:
    return f"{get_config().settings.base_url.rstrip('/')}/api/telegram/webhook"


async def setup_webhook(
    db: AsyncSession,
    user_id: str,
    gateway: TelegramGateway,
    now: datetime | None = None,
) -> WebhookSetupResult:
    """Register the shared webhook and record the outcome on the user's config."""
    settings = get_config().settings
    url = webhook_url()
    error: str | None = None

    try:
        response = await gateway.set_webhook(url, settings.telegram_webhook_secret)
        if not response.ok:
            error = response.description or f"HTTP {response.status_code}"
    except InvalidWebhookSecretError as e:
        error = str(e)
    except GatewayTransportError as e:
        error = f"Could not reach Telegram: {e}"

    config = await get_bot_config(db, user_id)
    if config is not None:
        config.last_webhook_setup_at = now or utc_now()
        config.last_webhook_status = WebhookStatus.FAILED if error else WebhookStatus.SUCCESS
        config.last_webhook_error = error
        await db.flush()

    if error:
        logger.bind(user_id=user_id, error=error).warning("webhook_setup_failed")
    else:
        logger.bind(user_id=user_id).info("webhook_setup_succeeded")

    return WebhookSetupResult(success=error is None, url=url, error=error)


async def delete_user_data(db: AsyncSession, user_id: str) -> dict[str, int]:
    """Delete every bot-related row owned by a user."""
    counts: dict[str, int] = {}
    for name, model in (
        ("prompts", PromptRecord),
        ("deliveries", PromptDelivery),
        ("verification_codes", VerificationCode),
        ("cooldowns", SendCooldown),
        ("bot_state", BotState),
        ("bot_config", BotConfig),
    ):
        result = await db.execute(delete(model).where(model.user_id == user_id))
        counts[name] = result.rowcount

    logger.bind(user_id=user_id, **counts).info("user_bot_data_deleted")
    return counts
