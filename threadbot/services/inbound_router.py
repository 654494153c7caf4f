"""
Routing for the shared Telegram webhook.

Every user's messages arrive on the same endpoint, so routing is by message
content and chat ID only. Classification order:

1. non-text updates are ignored
2. a 6-digit code or a greeting is a verification attempt; it either links
   the chat or gets an explanatory reply, and never becomes a prompt reply
3. anything else is a reply, logged against the chat owner's current prompt
"""

import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from threadbot.config import get_config
from threadbot.core.datetime_utils import utc_now
from threadbot.core.logging import get_logger
from threadbot.models.bot import BotConfig, PromptSource
from threadbot.schemas.telegram import TelegramUpdate
from threadbot.services import verification_service as ledger
from threadbot.services.bot_config_service import get_bot_config_by_chat, get_bot_state, link_chat
from threadbot.services.notion_service import NotionError, build_notion_client
from threadbot.services.prompt_store import append_reply, has_prompts
from threadbot.services.telegram_service import GatewayTransportError, TelegramGateway

logger = get_logger(__name__)

CODE_PATTERN = re.compile(r"(?<!\d)\d{6}(?!\d)")
GREETING_PATTERN = re.compile(r"\b(hello|hi|hey)\b", re.IGNORECASE)

LINKED = (
    "✅ Account linked!\n\n"
    "Your Telegram account is now connected to Threadbot. "
    "You'll receive your prompts here and can reply to log your thoughts."
)
LINKED_NO_PROMPTS = (
    "✅ Account linked!\n\n"
    "Your Telegram account is now connected to Threadbot. "
    "Generate your first prompts in the app and they'll arrive here on schedule."
)
ALREADY_LINKED = (
    "This chat is already linked to your Threadbot account. "
    "Reply to a prompt to log your thoughts."
)
NO_PENDING_CODE = (
    "I couldn't find a pending verification code. "
    "Request a new code from the Threadbot dashboard, then send it here."
)
CODE_INVALID = (
    "That code is invalid, already used or expired. "
    "Request a new code from the Threadbot dashboard and try again."
)
TOO_MANY_ATTEMPTS = "Too many failed attempts. Please wait an hour before trying another code."
LINK_INSTRUCTIONS = (
    "👋 Hello!\n\n"
    "To link your account:\n\n"
    "1. Go to your Threadbot dashboard\n"
    '2. Click "Connect Telegram"\n'
    "3. Send the 6-digit verification code here\n\n"
    'Or just say "hello" if you have an active verification code.'
)


@dataclass
class RouteOutcome:
    """What the router did with an update."""

    action: str
    chat_id: str | None = None
    user_id: str | None = None
    reply: str | None = None


@dataclass
class VerificationAttemptText:
    code: str | None
    greeting: bool


def detect_verification_attempt(text: str) -> VerificationAttemptText | None:
    """Extract a bare 6-digit code or a greeting word from message text."""
    code_match = CODE_PATTERN.search(text)
    greeting = bool(GREETING_PATTERN.search(text))
    if code_match is None and not greeting:
        return None
    return VerificationAttemptText(
        code=code_match.group(0) if code_match else None,
        greeting=greeting,
    )


async def _notify(gateway: TelegramGateway, chat_id: str, text: str) -> None:
    """Best-effort chat notice. Transport errors must not undo routing work."""
    try:
        await gateway.send_message(chat_id, text)
    except GatewayTransportError as e:
        logger.bind(chat_id=chat_id, error=str(e)).warning("router_notify_failed")


async def _handle_verification(
    db: AsyncSession,
    chat_id: str,
    attempt: VerificationAttemptText,
    linked_config: BotConfig | None,
    gateway: TelegramGateway,
    now: datetime,
) -> RouteOutcome:
    log = logger.bind(chat_id=chat_id, kind="code" if attempt.code else "greeting")

    if await ledger.is_chat_locked(db, chat_id, now):
        log.warning("verification_chat_locked_attempt")
        await _notify(gateway, chat_id, TOO_MANY_ATTEMPTS)
        return RouteOutcome("locked", chat_id=chat_id, reply=TOO_MANY_ATTEMPTS)

    if attempt.code is None:
        # A greeting from an already linked chat must not claim someone else's code
        if linked_config is not None:
            await _notify(gateway, chat_id, ALREADY_LINKED)
            return RouteOutcome(
                "already_linked",
                chat_id=chat_id,
                user_id=linked_config.user_id,
                reply=ALREADY_LINKED,
            )
        if not get_config().verification.allow_greeting_link:
            await _notify(gateway, chat_id, LINK_INSTRUCTIONS)
            return RouteOutcome("not_linked", chat_id=chat_id, reply=LINK_INSTRUCTIONS)

    code = await ledger.find_active_code(db, attempt.code, now)
    if code is None or not await ledger.consume_code(db, code, chat_id, now):
        if attempt.code is not None:
            await ledger.register_failed_attempt(db, chat_id, now)
            reply = CODE_INVALID
        else:
            reply = NO_PENDING_CODE
        log.info("verification_no_match")
        await _notify(gateway, chat_id, reply)
        return RouteOutcome("link_failed", chat_id=chat_id, reply=reply)

    user_id = code.user_id
    await link_chat(db, user_id, chat_id, code.timezone)
    await ledger.reset_attempts(db, chat_id)
    reply = LINKED if await has_prompts(db, user_id) else LINKED_NO_PROMPTS
    # Commit before confirming to the chat
    await db.commit()

    log.bind(user_id=user_id).info("verification_code_consumed")
    await _notify(gateway, chat_id, reply)
    return RouteOutcome("linked", chat_id=chat_id, user_id=user_id, reply=reply)


async def _handle_reply(
    db: AsyncSession,
    chat_id: str,
    text: str,
    config: BotConfig | None,
    gateway: TelegramGateway,
) -> RouteOutcome:
    if config is None:
        logger.bind(chat_id=chat_id).info("reply_from_unlinked_chat")
        await _notify(gateway, chat_id, LINK_INSTRUCTIONS)
        return RouteOutcome("not_linked", chat_id=chat_id, reply=LINK_INSTRUCTIONS)

    log = logger.bind(chat_id=chat_id, user_id=config.user_id)
    state = await get_bot_state(db, config.user_id)
    if state is None or not state.last_prompt_ref:
        log.info("reply_without_active_prompt")
        return RouteOutcome("no_active_prompt", chat_id=chat_id, user_id=config.user_id)

    if config.prompt_source == PromptSource.EXTERNAL and config.notion_token:
        try:
            await build_notion_client(config.notion_token).append_reply(state.last_prompt_ref, text)
        except NotionError as e:
            log.bind(error=str(e)).error("reply_log_failed")
            return RouteOutcome("reply_failed", chat_id=chat_id, user_id=config.user_id)
    else:
        try:
            appended = await append_reply(db, state.last_prompt_ref, text)
        except ValueError:
            appended = False
        if not appended:
            log.bind(prompt_ref=state.last_prompt_ref).warning("reply_prompt_missing")
            return RouteOutcome("reply_failed", chat_id=chat_id, user_id=config.user_id)

    log.info("reply_logged")
    return RouteOutcome("reply_logged", chat_id=chat_id, user_id=config.user_id)


async def handle_update(
    db: AsyncSession,
    update: TelegramUpdate,
    gateway: TelegramGateway,
    now: datetime | None = None,
) -> RouteOutcome:
    """
    Route one inbound update.

    Holds no state between calls; everything is read from the database.
    """
    now = now or utc_now()
    message = update.message
    if message is None or not message.text:
        return RouteOutcome("ignored")

    chat_id = str(message.chat.id)
    text = message.text.strip()
    config = await get_bot_config_by_chat(db, chat_id)

    attempt = detect_verification_attempt(text)
    if attempt is not None:
        return await _handle_verification(db, chat_id, attempt, config, gateway, now)

    return await _handle_reply(db, chat_id, text, config, gateway)
