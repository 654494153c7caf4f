from threadbot.schemas.bot_config import BotConfigResponse, BotConfigUpdate
from threadbot.schemas.cron import CleanupResponse, SweepResponse, UserOutcomeResponse
from threadbot.schemas.jobs import JobRunResponse, ScheduleResponse
from threadbot.schemas.prompts import SendNowRequest, SendNowResponse
from threadbot.schemas.telegram import (
    LinkCodeResponse,
    LinkRequest,
    LinkStatusResponse,
    TelegramUpdate,
    WebhookSetupResponse,
)

__all__ = [
    "BotConfigUpdate",
    "BotConfigResponse",
    "SweepResponse",
    "UserOutcomeResponse",
    "CleanupResponse",
    "ScheduleResponse",
    "JobRunResponse",
    "SendNowRequest",
    "SendNowResponse",
    "TelegramUpdate",
    "LinkRequest",
    "LinkCodeResponse",
    "LinkStatusResponse",
    "WebhookSetupResponse",
]
