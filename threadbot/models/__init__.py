from threadbot.models.base import Base
from threadbot.models.bot import BotConfig, BotState, PromptSource, WebhookStatus
from threadbot.models.cooldown import SendCooldown
from threadbot.models.job_run import JobRun
from threadbot.models.prompt import (
    DeliveryStatus,
    PromptDelivery,
    PromptRecord,
    PromptSlot,
    PromptStatus,
)
from threadbot.models.verification import VerificationAttempt, VerificationCode

__all__ = [
    "Base",
    "BotConfig",
    "BotState",
    "PromptSource",
    "WebhookStatus",
    "PromptRecord",
    "PromptSlot",
    "PromptStatus",
    "PromptDelivery",
    "DeliveryStatus",
    "VerificationCode",
    "VerificationAttempt",
    "SendCooldown",
    "JobRun",
]
