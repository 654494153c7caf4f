"""
APScheduler integration for FastAPI.

Runs the delivery sweeps and ledger cleanup in-process. The cron endpoint
and CLI trigger the same work; overlapping runs are safe because delivery
is claimed per user, date and slot in the database.

Jobs:
- Morning sweep: every 5 minutes, delivers morning prompts inside users' windows
- Evening sweep: every 5 minutes, delivers evening prompts inside users' windows
- Ledger cleanup: hourly, prunes expired codes, stale attempts and cooldowns
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from threadbot.config import get_config
from threadbot.core.database import AsyncSessionLocal
from threadbot.core.datetime_utils import to_naive_utc, utc_now
from threadbot.core.logging import get_logger
from threadbot.models.job_run import JobRun
from threadbot.models.prompt import PromptSlot
from threadbot.services.cleanup import run_ledger_cleanup
from threadbot.services.delivery import run_delivery_sweep

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def _sweep(slot: PromptSlot) -> None:
    try:
        result = await run_delivery_sweep(slot)
    except Exception as e:
        logger.bind(slot=slot.value, error=str(e)).error("scheduled_sweep_failed")
        raise  # Re-raise so APScheduler records the failure

    if result.processed:
        logger.bind(slot=slot.value, sent=result.sent, failed=result.failed).info(
            "scheduled_sweep_completed"
        )
    else:
        logger.bind(slot=slot.value).debug("scheduled_sweep_no_users_in_window")


async def morning_sweep_job() -> None:
    await _sweep(PromptSlot.MORNING)


async def evening_sweep_job() -> None:
    await _sweep(PromptSlot.EVENING)


async def cleanup_job() -> None:
    """Hourly ledger cleanup."""
    async with AsyncSessionLocal() as db:
        try:
            await run_ledger_cleanup(db)
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_cleanup_failed")
            raise


JobSpec = tuple[str, Callable[[], Awaitable[None]], CronTrigger]


def _job_table(sweep_interval: int) -> list[JobSpec]:
    """Schedule id, job function and trigger for every in-process job."""
    # Triggers keep fire-time state, so each schedule gets its own
    return [
        ("morning_sweep", morning_sweep_job, CronTrigger(minute=f"*/{sweep_interval}")),
        ("evening_sweep", evening_sweep_job, CronTrigger(minute=f"*/{sweep_interval}")),
        ("ledger_cleanup", cleanup_job, CronTrigger(minute=30)),
    ]


async def _record_job_result(
    job_id: str,
    scheduled_at: datetime,
    started_at: datetime,
    outcome: JobOutcome,
    error: str | None = None,
) -> None:
    """Record job execution result to database."""
    async with AsyncSessionLocal() as db:
        job_run = JobRun(
            job_id=job_id,
            scheduled_at=to_naive_utc(scheduled_at),
            started_at=to_naive_utc(started_at),
            finished_at=utc_now(),
            outcome=outcome.name,
            error=error,
        )
        db.add(job_run)
        await db.commit()


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the in-memory scheduler."""
    global scheduler

    config = get_config()
    if not config.settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    jobs = _job_table(config.delivery.sweep_interval_minutes)

    scheduler = AsyncScheduler(data_store=MemoryDataStore())
    # APScheduler 4 needs the context entered before schedules can be added
    await scheduler.__aenter__()
    scheduler.subscribe(_on_job_completed)

    for job_id, func, trigger in jobs:
        await scheduler.add_schedule(
            func, trigger, id=job_id, conflict_policy=ConflictPolicy.replace
        )

    await scheduler.start_in_background()

    logger.bind(jobs=[job_id for job_id, _, _ in jobs]).info("scheduler_started")
    return scheduler


async def _on_job_completed(event: Any) -> None:
    """Handle job completion events."""
    if isinstance(event, JobReleased):
        try:
            scheduled_at = getattr(event, "scheduled_fire_time", None) or utc_now()
            started_at = getattr(event, "started_at", None) or utc_now()
            exception = getattr(event, "exception", None)
            await _record_job_result(
                job_id=event.schedule_id or "unknown",
                scheduled_at=scheduled_at,
                started_at=started_at,
                outcome=event.outcome,
                error=str(exception) if event.outcome == JobOutcome.error and exception else None,
            )
        except Exception as e:
            logger.bind(error=str(e)).error("failed_to_record_job_result")


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
