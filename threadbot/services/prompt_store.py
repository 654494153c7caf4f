"""
Prompt storage and per-slot content resolution.

Prompts are produced by an external generation pipeline (see PromptGenerator)
and stored here, one record per user, date and slot.
"""

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

from sqlalchemy import case, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from threadbot.core.logging import get_logger
from threadbot.models.bot import BotConfig, PromptSource
from threadbot.models.prompt import PromptRecord, PromptSlot, PromptStatus
from threadbot.services.notion_service import NotionClient, build_notion_client

logger = get_logger(__name__)

REPLY_SEPARATOR = "\n\n---\n\n"


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


@dataclass
class GeneratedPrompt:
    """One unit of output from the prompt generation pipeline."""

    date: date
    slot: PromptSlot
    prompts: list[str]
    name: str = ""
    theme: str = ""


class PromptGenerator(Protocol):
    """Black-box producer of prompts for a date range."""

    async def generate(
        self, user_id: str, start: date, end: date, context: dict[str, str] | None = None
    ) -> list[GeneratedPrompt]: ...


@dataclass
class PromptContent:
    """Resolved content for one slot, ready to format."""

    ref: str
    theme: str
    body: str
    source: PromptSource
    prompts: list[str] = field(default_factory=list)


def number_prompts(prompts: Sequence[str]) -> str:
    return "\n".join(f"{i}. {p}" for i, p in enumerate(prompts, start=1))


async def store_generated_prompts(
    db: AsyncSession, user_id: str, generated: Sequence[GeneratedPrompt]
) -> int:
    """
    Upsert generated prompts for a user.

    Records already sent are left untouched.

    Returns:
        Number of records created or updated
    """
    stored = 0
    for item in generated:
        record = await get_prompt_for_slot(db, user_id, item.date, item.slot)
        if record is None:
            db.add(
                PromptRecord(
                    user_id=user_id,
                    date=item.date,
                    slot=item.slot,
                    name=item.name,
                    theme=item.theme,
                    prompts=list(item.prompts),
                    status=PromptStatus.SCHEDULED,
                )
            )
        elif record.status == PromptStatus.SENT:
            continue
        else:
            record.name = item.name
            record.theme = item.theme
            record.prompts = list(item.prompts)
            record.status = PromptStatus.SCHEDULED
        stored += 1

    await db.flush()
    logger.bind(user_id=user_id, stored=stored, received=len(generated)).info("prompts_stored")
    return stored


async def get_prompt_for_slot(
    db: AsyncSession, user_id: str, on_date: date, slot: PromptSlot
) -> PromptRecord | None:
    result = await db.execute(
        select(PromptRecord).where(
            PromptRecord.user_id == user_id,
            PromptRecord.date == on_date,
            PromptRecord.slot == slot,
        )
    )
    return result.scalar_one_or_none()


async def has_prompts(db: AsyncSession, user_id: str) -> bool:
    """Check whether the user has at least one stored prompt."""
    result = await db.execute(select(exists().where(PromptRecord.user_id == user_id)))
    return bool(result.scalar())


async def mark_prompt_sent(db: AsyncSession, prompt_id: str | uuid.UUID) -> bool:
    """Move a prompt to sent. Returns False if it was already sent."""
    result = await db.execute(
        update(PromptRecord)
        .where(PromptRecord.id == _as_uuid(prompt_id), PromptRecord.status != PromptStatus.SENT)
        .values(status=PromptStatus.SENT)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def append_reply(db: AsyncSession, prompt_id: str | uuid.UUID, text: str) -> bool:
    """
    Append a reply to a prompt's response in one statement.

    Concurrent replies never overwrite each other since concatenation
    happens in the database.
    """
    empty = or_(PromptRecord.response.is_(None), PromptRecord.response == "")
    result = await db.execute(
        update(PromptRecord)
        .where(PromptRecord.id == _as_uuid(prompt_id))
        .values(
            response=case(
                (empty, text),
                else_=PromptRecord.response + REPLY_SEPARATOR + text,
            )
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def resolve_prompt_content(
    db: AsyncSession,
    config: BotConfig,
    on_date: date,
    slot: PromptSlot,
    notion_factory: Callable[[str], NotionClient] = build_notion_client,
) -> PromptContent | None:
    """
    Find the content to send for a user's slot on a local date.

    Returns None when nothing usable exists.

    Raises:
        NotionError: If the external source cannot be queried
    """
    if config.prompt_source == PromptSource.EXTERNAL:
        if not config.notion_token or not config.notion_database_id:
            return None
        notion = notion_factory(config.notion_token)
        page = await notion.find_prompt(config.notion_database_id, on_date, slot.value)
        if page is None:
            return None
        body = await notion.get_page_text(page.page_id)
        if not body:
            return None
        return PromptContent(
            ref=page.page_id, theme=page.topic, body=body, source=PromptSource.EXTERNAL
        )

    record = await get_prompt_for_slot(db, config.user_id, on_date, slot)
    if record is None or not record.prompts:
        return None
    return PromptContent(
        ref=str(record.id),
        theme=record.theme,
        body=number_prompts(record.prompts),
        source=PromptSource.GENERATED,
        prompts=list(record.prompts),
    )

