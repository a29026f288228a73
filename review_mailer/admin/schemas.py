"""Review job response schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from ..queue.models import JobStatus, ReviewJob


class JobResponse(BaseModel):
    id: int
    order_id: str
    email: str
    name: str | None
    created_at: datetime
    send_after: datetime
    canceled: bool
    sent_at: datetime | None
    last_error: str | None
    has_interaction: bool
    reminder_sent_at: datetime | None
    reminder_count: int
    reminder_blocked_reason: str | None
    status: JobStatus

    model_config = {"from_attributes": True}

    @classmethod
    def from_job(cls, job: ReviewJob, now: datetime | None = None) -> "JobResponse":
        return cls.model_validate({**{c: getattr(job, c) for c in _COLUMNS}, "status": job.status(now)})


_COLUMNS = [name for name in JobResponse.model_fields if name != "status"]


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    counts: dict[str, int]


class InteractionRequest(BaseModel):
    reason: str | None = Field(None, max_length=255)
