from datetime import date

from pydantic import BaseModel

from threadbot.models.prompt import PromptSlot


class SendNowRequest(BaseModel):
    """Request body for sending one prompt immediately."""

    date: date
    slot: PromptSlot


class SendNowResponse(BaseModel):
    success: bool
    message: str
    retry_after_seconds: int | None = None
