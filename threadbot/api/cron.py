"""Cron-triggered endpoints, authenticated with X-Cron-Secret."""

from fastapi import APIRouter, Query

from threadbot.core.logging import get_logger
from threadbot.dependencies import CronAuth, DBSession, Gateway, SessionFactory
from threadbot.models.prompt import PromptSlot
from threadbot.schemas.cron import CleanupResponse, SweepResponse, UserOutcomeResponse
from threadbot.services.cleanup import run_ledger_cleanup
from threadbot.services.delivery import run_delivery_sweep

logger = get_logger(__name__)
router = APIRouter(dependencies=[CronAuth])


@router.post("/cron/sweep", response_model=SweepResponse)
async def cron_sweep(
    gateway: Gateway,
    session_factory: SessionFactory,
    slot: PromptSlot = Query(..., description="morning or evening"),
) -> SweepResponse:
    """
    Run one delivery sweep for a slot.

    Meant to be called every 5 minutes per slot. Repeated or overlapping
    calls never send a slot twice to the same user on the same day.
    """
    result = await run_delivery_sweep(slot, gateway=gateway, session_factory=session_factory)
    return SweepResponse(
        slot=result.slot,
        processed=result.processed,
        sent=result.sent,
        failed=result.failed,
        skipped=result.skipped,
        outcomes=[
            UserOutcomeResponse(user_id=o.user_id, status=o.status, reason=o.reason)
            for o in result.outcomes
        ],
    )


@router.post("/cron/cleanup", response_model=CleanupResponse)
async def cron_cleanup(db: DBSession) -> CleanupResponse:
    """Prune expired codes, stale attempts and old cooldowns."""
    result = await run_ledger_cleanup(db)
    return CleanupResponse(
        expired_codes=result.expired_codes,
        used_codes=result.used_codes,
        stale_attempts=result.stale_attempts,
        reset_attempts=result.reset_attempts,
        cooldowns=result.cooldowns,
    )
