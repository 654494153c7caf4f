"""Tests for prompt storage and content resolution."""

import uuid
from datetime import date

import pytest

from threadbot.models.bot import PromptSource
from threadbot.models.prompt import PromptSlot, PromptStatus
from threadbot.services.notion_service import NotionPage
from threadbot.services.prompt_store import (
    REPLY_SEPARATOR,
    GeneratedPrompt,
    append_reply,
    get_prompt_for_slot,
    has_prompts,
    mark_prompt_sent,
    number_prompts,
    resolve_prompt_content,
    store_generated_prompts,
)

pytestmark = pytest.mark.asyncio

DAY = date(2026, 3, 2)


class TestStoreGeneratedPrompts:
    """Tests for store_generated_prompts."""

    async def test_inserts_and_updates(self, db_session):
        stored = await store_generated_prompts(
            db_session,
            "u1",
            [
                GeneratedPrompt(DAY, PromptSlot.MORNING, ["A?"], theme="Rest"),
                GeneratedPrompt(DAY, PromptSlot.EVENING, ["B?"], theme="Rest"),
            ],
        )
        assert stored == 2

        await store_generated_prompts(
            db_session, "u1", [GeneratedPrompt(DAY, PromptSlot.MORNING, ["C?"], theme="Play")]
        )

        record = await get_prompt_for_slot(db_session, "u1", DAY, PromptSlot.MORNING)
        assert record.prompts == ["C?"]
        assert record.theme == "Play"
        assert record.status == PromptStatus.SCHEDULED

    async def test_sent_prompts_are_not_overwritten(self, db_session, prompt_factory):
        await prompt_factory("u1", DAY, prompts=["Original?"], status=PromptStatus.SENT)

        stored = await store_generated_prompts(
            db_session, "u1", [GeneratedPrompt(DAY, PromptSlot.MORNING, ["Replacement?"])]
        )

        assert stored == 0
        record = await get_prompt_for_slot(db_session, "u1", DAY, PromptSlot.MORNING)
        assert record.prompts == ["Original?"]

    async def test_has_prompts(self, db_session, prompt_factory):
        assert await has_prompts(db_session, "u1") is False
        await prompt_factory("u1", DAY)
        assert await has_prompts(db_session, "u1") is True


class TestMarkPromptSent:
    async def test_only_first_call_changes_status(self, db_session, prompt_factory):
        record = await prompt_factory("u1", DAY)

        assert await mark_prompt_sent(db_session, record.id) is True
        assert await mark_prompt_sent(db_session, str(record.id)) is False

        await db_session.refresh(record)
        assert record.status == PromptStatus.SENT


class TestAppendReply:
    async def test_appends_with_separator(self, db_session, prompt_factory):
        record = await prompt_factory("u1", DAY)

        assert await append_reply(db_session, record.id, "one") is True
        assert await append_reply(db_session, record.id, "two") is True
        assert await append_reply(db_session, record.id, "three") is True

        await db_session.refresh(record)
        assert record.response == REPLY_SEPARATOR.join(["one", "two", "three"])

    async def test_empty_response_is_replaced(self, db_session, prompt_factory):
        record = await prompt_factory("u1", DAY)
        record.response = ""
        await db_session.flush()

        await append_reply(db_session, record.id, "first")

        await db_session.refresh(record)
        assert record.response == "first"

    async def test_missing_prompt(self, db_session):
        assert await append_reply(db_session, uuid.uuid4(), "text") is False

    async def test_malformed_reference(self, db_session):
        with pytest.raises(ValueError):
            await append_reply(db_session, "not-a-uuid", "text")


class TestResolvePromptContent:
    """Tests for resolve_prompt_content."""

    async def test_generated(self, db_session, bot_config_factory, prompt_factory):
        config = await bot_config_factory(user_id="u1")
        record = await prompt_factory("u1", DAY, prompts=["A?", "B?"], theme="Rest")

        content = await resolve_prompt_content(db_session, config, DAY, PromptSlot.MORNING)

        assert content.ref == str(record.id)
        assert content.body == "1. A?\n2. B?"
        assert content.theme == "Rest"
        assert content.source == PromptSource.GENERATED

    async def test_generated_missing(self, db_session, bot_config_factory):
        config = await bot_config_factory(user_id="u1")

        assert await resolve_prompt_content(db_session, config, DAY, PromptSlot.MORNING) is None

    async def test_external(self, db_session, bot_config_factory):
        config = await bot_config_factory(user_id="u1", prompt_source=PromptSource.EXTERNAL)
        config.notion_token = "secret_token"
        config.notion_database_id = "db-1"
        calls = []

        class Notion:
            async def find_prompt(self, database_id, on_date, slot):
                calls.append((database_id, on_date, slot))
                return NotionPage(page_id="page-9", title="Morning", topic="Craft")

            async def get_page_text(self, page_id):
                return "Body text"

        content = await resolve_prompt_content(
            db_session, config, DAY, PromptSlot.MORNING, notion_factory=lambda token: Notion()
        )

        assert calls == [("db-1", DAY, "morning")]
        assert content.ref == "page-9"
        assert content.body == "Body text"
        assert content.source == PromptSource.EXTERNAL

    async def test_external_without_credentials(self, db_session, bot_config_factory):
        config = await bot_config_factory(user_id="u1", prompt_source=PromptSource.EXTERNAL)

        def factory(token):
            raise AssertionError("should not be called")

        content = await resolve_prompt_content(
            db_session, config, DAY, PromptSlot.MORNING, notion_factory=factory
        )
        assert content is None


class TestNumberPrompts:
    async def test_numbering(self):
        assert number_prompts(["a", "b", "c"]) == "1. a\n2. b\n3. c"
        assert number_prompts([]) == ""
