"""Visibility into the in-process sweep and cleanup jobs."""

from fastapi import APIRouter, Query
from sqlalchemy import select

from threadbot.core.scheduler import get_job_schedules
from threadbot.dependencies import DBSession
from threadbot.models.job_run import JobRun
from threadbot.schemas.jobs import JobRunResponse, ScheduleResponse

router = APIRouter()


def _to_response(run: JobRun) -> JobRunResponse:
    return JobRunResponse(
        id=run.id,
        job_id=run.job_id,
        scheduled_at=run.scheduled_at,
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_seconds=(run.finished_at - run.started_at).total_seconds(),
        outcome=run.outcome,
        error=run.error,
    )


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """Registered schedules. Empty when the in-process scheduler is disabled."""
    return [ScheduleResponse(**s) for s in await get_job_schedules()]


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    job_id: str | None = Query(default=None, description="morning_sweep, evening_sweep, ..."),
    failed_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[JobRunResponse]:
    """Most recent job runs first."""
    query = select(JobRun).order_by(JobRun.scheduled_at.desc()).limit(limit)
    if job_id:
        query = query.where(JobRun.job_id == job_id)
    if failed_only:
        query = query.where(JobRun.outcome != "success")

    runs = (await db.execute(query)).scalars().all()
    return [_to_response(run) for run in runs]
