from pydantic import BaseModel

from threadbot.models.prompt import PromptSlot


class UserOutcomeResponse(BaseModel):
    user_id: str
    status: str
    reason: str | None = None


class SweepResponse(BaseModel):
    """Summary of one delivery sweep."""

    slot: PromptSlot
    processed: int
    sent: int
    failed: int
    skipped: int
    outcomes: list[UserOutcomeResponse] = []


class CleanupResponse(BaseModel):
    expired_codes: int
    used_codes: int
    stale_attempts: int
    reset_attempts: int
    cooldowns: int
