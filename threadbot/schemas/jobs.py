from datetime import datetime

from pydantic import BaseModel


class ScheduleResponse(BaseModel):
    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


class JobRunResponse(BaseModel):
    """One recorded execution of a sweep or cleanup job."""

    id: str
    job_id: str
    scheduled_at: datetime
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    outcome: str
    error: str | None = None
