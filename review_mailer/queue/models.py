"""Review queue model and derived job status."""

import enum
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, Index, Integer, String, Text

from ..database.base import Base, UTCDateTime, ensure_utc


class JobStatus(enum.StrEnum):
    """Status shown to admins, derived from the stored columns."""

    CANCELED = "canceled"
    ERROR = "error"
    SENT_WITH_ERROR = "sent-with-error"
    SENT = "sent"
    DUE = "due"
    SCHEDULED = "scheduled"


class ReviewJob(Base):
    """One review-email job per order. Rows are never deleted."""

    __tablename__ = "review_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), nullable=False, unique=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), default="")
    created_at = Column(UTCDateTime, nullable=False)
    send_after = Column(UTCDateTime, nullable=False)
    canceled = Column(Boolean, nullable=False, default=False)
    sent_at = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Reminder lifecycle
    has_interaction = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(UTCDateTime, nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)
    reminder_blocked_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_review_queue_send_after", "send_after"),
        Index("idx_review_queue_email", "email"),
    )

    def status(self, now: datetime | None = None) -> JobStatus:
        return derive_status(self, now)

    def __repr__(self) -> str:
        return f"<ReviewJob id={self.id} order_id={self.order_id!r}>"


def derive_status(job: ReviewJob, now: datetime | None = None) -> JobStatus:
    """Map the stored columns of a job to exactly one JobStatus.

    Precedence: canceled, error, sent-with-error, sent, due, scheduled.
    """
    if job.canceled:
        return JobStatus.CANCELED
    if job.last_error and job.sent_at is None:
        return JobStatus.ERROR
    if job.last_error:
        return JobStatus.SENT_WITH_ERROR
    if job.sent_at is not None:
        return JobStatus.SENT
    now = ensure_utc(now) if now else datetime.now(UTC)
    if ensure_utc(job.send_after) <= now:
        return JobStatus.DUE
    return JobStatus.SCHEDULED
