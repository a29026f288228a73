"""Review queue service: insertion, selectors, and outcome recording.

Every write is a single-row, single-statement UPDATE/INSERT. Functions flush
through the given session; callers decide when to commit.
"""

import logging
from collections import Counter
from datetime import UTC, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ..database.base import ensure_utc
from .models import JobStatus, ReviewJob, derive_status

logger = logging.getLogger(__name__)

BATCH_LIMIT = 100
MAX_ERROR_LENGTH = 500


def _now() -> datetime:
    return datetime.now(UTC)


def schedule_send_after(created_at: datetime, delay_days: int) -> datetime:
    """First-send time for an order created at ``created_at``."""
    return ensure_utc(created_at) + timedelta(days=delay_days)


# ── Insertion ──────────────────────────────────────────────────────────


def insert_job(
    db: Session,
    order_id: str,
    email: str,
    name: str,
    created_at: datetime,
    send_after: datetime,
) -> bool:
    """Queue a review email for an order. Returns True if a row was created.

    A second call for the same order_id is a silent no-op: the existing row
    (and its email) is left untouched.
    """
    order_id = (order_id or "").strip()
    email = (email or "").strip()
    if not order_id:
        raise ValueError("order_id is required")
    if not email:
        raise ValueError("email is required")

    stmt = (
        sqlite_insert(ReviewJob)
        .values(
            order_id=order_id,
            email=email,
            name=name or "",
            created_at=created_at,
            send_after=send_after,
            canceled=False,
            has_interaction=False,
            reminder_count=0,
        )
        .on_conflict_do_nothing(index_elements=["order_id"])
    )
    result = db.execute(stmt)
    created = result.rowcount == 1
    if created:
        logger.debug("Queued review job for order %s (send_after=%s)", order_id, send_after)
    else:
        logger.debug("Review job for order %s already exists, insert ignored", order_id)
    return created


# ── Selectors ──────────────────────────────────────────────────────────


def due_jobs(db: Session, now: datetime | None = None, limit: int = BATCH_LIMIT) -> list[ReviewJob]:
    """Jobs whose first email is due, earliest send_after first.

    Rows are not claimed: a row whose outcome was never recorded comes back
    on the next poll.
    """
    now = now or _now()
    return (
        db.query(ReviewJob)
        .filter(
            ReviewJob.canceled == False,  # noqa: E712
            ReviewJob.sent_at.is_(None),
            ReviewJob.send_after <= now,
        )
        .order_by(ReviewJob.send_after.asc(), ReviewJob.id.asc())
        .limit(limit)
        .all()
    )


def reminder_candidates(
    db: Session,
    min_days: float,
    now: datetime | None = None,
    limit: int = BATCH_LIMIT,
) -> list[ReviewJob]:
    """Sent jobs that have waited at least ``min_days`` and never got a reminder.

    The upper bound of the reminder window is applied by the caller.
    """
    now = now or _now()
    threshold = ensure_utc(now) - timedelta(days=min_days)
    return (
        db.query(ReviewJob)
        .filter(
            ReviewJob.sent_at.isnot(None),
            ReviewJob.canceled == False,  # noqa: E712
            ReviewJob.has_interaction == False,  # noqa: E712
            ReviewJob.reminder_count == 0,
            ReviewJob.reminder_sent_at.is_(None),
            ReviewJob.sent_at <= threshold,
        )
        .order_by(ReviewJob.sent_at.asc(), ReviewJob.id.asc())
        .limit(limit)
        .all()
    )


# ── Outcome recording ─────────────────────────────────────────────────


def _update_by_order(db: Session, order_id: str, values: dict) -> bool:
    updated = (
        db.query(ReviewJob)
        .filter(ReviewJob.order_id == order_id)
        .update(values, synchronize_session="fetch")
    )
    return updated > 0


def _update_by_id(db: Session, job_id: int, values: dict) -> bool:
    updated = (
        db.query(ReviewJob)
        .filter(ReviewJob.id == job_id)
        .update(values, synchronize_session="fetch")
    )
    return updated > 0


def mark_sent(db: Session, order_id: str, sent_at: datetime | None = None) -> bool:
    """Record a confirmed first send and clear any previous error."""
    return _update_by_order(
        db,
        order_id,
        {ReviewJob.sent_at: sent_at or _now(), ReviewJob.last_error: None},
    )


def mark_error(db: Session, order_id: str, message: str) -> bool:
    """Record the latest first-send failure. sent_at is left as is."""
    return _update_by_order(db, order_id, {ReviewJob.last_error: (message or "")[:MAX_ERROR_LENGTH]})


def mark_canceled(db: Session, order_id: str) -> bool:
    """Exclude the job from every selector. Other columns are untouched."""
    return _update_by_order(db, order_id, {ReviewJob.canceled: True})


def mark_uncanceled(db: Session, order_id: str) -> bool:
    return _update_by_order(db, order_id, {ReviewJob.canceled: False})


def mark_reminder_sent(db: Session, job_id: int, sent_at: datetime | None = None) -> bool:
    return _update_by_id(
        db,
        job_id,
        {
            ReviewJob.reminder_sent_at: sent_at or _now(),
            ReviewJob.reminder_count: ReviewJob.reminder_count + 1,
        },
    )


def mark_interaction(db: Session, job_id: int, reason: str | None = None) -> bool:
    """Flag that the recipient already engaged. The first recorded reason wins."""
    values = {ReviewJob.has_interaction: True}
    if reason:
        values[ReviewJob.reminder_blocked_reason] = func.coalesce(ReviewJob.reminder_blocked_reason, reason)
    return _update_by_id(db, job_id, values)


# ── Lookups ────────────────────────────────────────────────────────────


def get_job(db: Session, job_id: int) -> ReviewJob | None:
    return db.query(ReviewJob).filter(ReviewJob.id == job_id).first()


def get_job_by_order_id(db: Session, order_id: str) -> ReviewJob | None:
    return db.query(ReviewJob).filter(ReviewJob.order_id == order_id).first()


def list_jobs(
    db: Session,
    status: JobStatus | None = None,
    limit: int = 500,
    now: datetime | None = None,
) -> list[ReviewJob]:
    """Newest jobs first, optionally filtered by derived status."""
    now = now or _now()
    rows = db.query(ReviewJob).order_by(ReviewJob.created_at.desc(), ReviewJob.id.desc()).all()
    if status is not None:
        rows = [r for r in rows if derive_status(r, now) == status]
    return rows[:limit]


def count_by_status(db: Session, now: datetime | None = None) -> dict[str, int]:
    now = now or _now()
    counts = Counter(derive_status(r, now).value for r in db.query(ReviewJob).all())
    return {s.value: counts.get(s.value, 0) for s in JobStatus}
