"""Periodic review-mail scheduler.

Each tick runs two phases on one session: first sends, then reminders. Rows
are processed one at a time in selector order; a failing row is recorded and
the loop moves on. An unhandled error in the first-send phase skips the
reminder phase for that tick. Nothing here ever stops the loop.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..mailer.service import MailSender, TransientSendError
from ..queue.service import due_jobs, mark_error, mark_reminder_sent, mark_sent, reminder_candidates
from .policy import ReminderPolicy, days_between

logger = logging.getLogger(__name__)

NOT_ACCEPTED = "Mail provider did not accept the message"


@dataclass
class TickResult:
    sent: int = 0
    failed: int = 0
    reminders_sent: int = 0
    reminders_failed: int = 0
    reminders_skipped: int = 0
    error: str | None = None


def _clock() -> datetime:
    return datetime.now(UTC)


def _deliver(sender: MailSender, email: str, name: str, job_id: int, is_reminder: bool) -> None:
    if not sender.send_review_email(email, name, job_id, is_reminder=is_reminder):
        raise TransientSendError(NOT_ACCEPTED)


def run_first_send_phase(db: Session, sender: MailSender, now: datetime, result: TickResult) -> None:
    rows = due_jobs(db, now)
    if not rows:
        return
    logger.info("Scheduler: sending %d first review mails", len(rows))

    for job in rows:
        order_id, job_id = job.order_id, job.id
        try:
            _deliver(sender, job.email, job.name, job_id, is_reminder=False)
            mark_sent(db, order_id, _clock())
            db.commit()
            result.sent += 1
        except SQLAlchemyError:
            raise
        except Exception as exc:
            db.rollback()
            message = str(exc) or exc.__class__.__name__
            mark_error(db, order_id, message)
            db.commit()
            result.failed += 1
            logger.error("Send failed (first mail) for order %s: %s", order_id, message)


def run_reminder_phase(
    db: Session,
    sender: MailSender,
    policy: ReminderPolicy,
    now: datetime,
    result: TickResult,
) -> None:
    rows = reminder_candidates(db, policy.min_days, now)
    if not rows:
        return
    logger.info(
        "Scheduler: %d reminder candidates (min_days=%s, max_days=%s, whitelist_enabled=%s)",
        len(rows),
        policy.min_days,
        policy.max_days,
        policy.whitelist_enabled,
    )

    for job in rows:
        job_id, order_id, email = job.id, job.order_id, job.email
        days_since = days_between(job.sent_at, now)

        if not policy.within_window(job.sent_at, now):
            result.reminders_skipped += 1
            logger.info("Reminder skipped for job %s: %.1f days since first mail", job_id, days_since)
            continue

        if not policy.allows(email):
            result.reminders_skipped += 1
            logger.info("Reminder skipped for job %s: %s not on the allow-list", job_id, email)
            continue

        try:
            logger.info("Scheduler: sending reminder for order %s (%.1f days since first mail)", order_id, days_since)
            _deliver(sender, email, job.name, job_id, is_reminder=True)
            mark_reminder_sent(db, job_id, _clock())
            db.commit()
            result.reminders_sent += 1
        except SQLAlchemyError:
            raise
        except Exception as exc:
            # reminder_count stays 0 so the row is retried next tick
            db.rollback()
            result.reminders_failed += 1
            logger.error("Send failed (reminder) for order %s: %s", order_id, exc)


def run_tick(
    session_factory: Callable[[], Session],
    sender: MailSender,
    policy: ReminderPolicy,
    now: datetime | None = None,
) -> TickResult:
    """Run one scheduler iteration. Never raises."""
    now = now or _clock()
    result = TickResult()
    db: Session | None = None
    try:
        db = session_factory()
        run_first_send_phase(db, sender, now, result)
        run_reminder_phase(db, sender, policy, now, result)
    except Exception as exc:
        result.error = str(exc) or exc.__class__.__name__
        logger.exception("Scheduler tick failed")
        if db is not None:
            try:
                db.rollback()
            except SQLAlchemyError:
                logger.exception("Rollback after failed tick failed")
    finally:
        if db is not None:
            db.close()
    return result


class ReviewScheduler:
    """Fixed-interval loop driving run_tick in a worker thread."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: MailSender,
        policy: ReminderPolicy,
        interval_seconds: float = 60,
    ) -> None:
        self._session_factory = session_factory
        self._sender = sender
        self._policy = policy
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None
        self.last_tick_at: datetime | None = None
        self.last_result: TickResult | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> TickResult:
        result = await asyncio.to_thread(run_tick, self._session_factory, self._sender, self._policy)
        self.last_tick_at = _clock()
        self.last_result = result
        if result.sent or result.failed or result.reminders_sent or result.reminders_failed:
            logger.info(
                "Scheduler tick: sent=%d failed=%d reminders_sent=%d reminders_failed=%d skipped=%d",
                result.sent,
                result.failed,
                result.reminders_sent,
                result.reminders_failed,
                result.reminders_skipped,
            )
        return result

    async def _run(self, stopping: asyncio.Event) -> None:
        while not stopping.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick crashed, next attempt in %ss", self._interval)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stopping.wait(), timeout=self._interval)

    def start(self) -> None:
        if self.is_running:
            return
        logger.info("Starting review scheduler (interval=%ss)", self._interval)
        stopping = self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(stopping), name="review-scheduler")

    async def stop(self) -> None:
        """Stop the loop. A tick already running in the worker thread is awaited."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Review scheduler stopped")
