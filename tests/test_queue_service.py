"""Tests for the review queue: insertion, selectors, and outcome recording."""

from datetime import timedelta

import pytest

from review_mailer.queue.models import JobStatus, ReviewJob, derive_status
from review_mailer.queue.service import (
    BATCH_LIMIT,
    count_by_status,
    due_jobs,
    get_job_by_order_id,
    insert_job,
    list_jobs,
    mark_canceled,
    mark_error,
    mark_interaction,
    mark_reminder_sent,
    mark_sent,
    mark_uncanceled,
    reminder_candidates,
    schedule_send_after,
)

from conftest import NOW


def _insert(db, order_id="A1", email="x@y.com", created_at=NOW, delay_days=5):
    return insert_job(db, order_id, email, "Jane Doe", created_at, schedule_send_after(created_at, delay_days))


class TestInsertJob:
    def test_creates_row_with_defaults(self, db_session):
        assert _insert(db_session) is True
        db_session.commit()

        job = get_job_by_order_id(db_session, "A1")
        assert job.email == "x@y.com"
        assert job.name == "Jane Doe"
        assert job.created_at == NOW
        assert job.send_after == NOW + timedelta(days=5)
        assert job.canceled is False
        assert job.sent_at is None
        assert job.last_error is None
        assert job.has_interaction is False
        assert job.reminder_count == 0
        assert job.reminder_sent_at is None
        assert job.reminder_blocked_reason is None

    def test_duplicate_order_is_silent_noop(self, db_session):
        _insert(db_session, email="first@example.com")
        db_session.commit()

        assert _insert(db_session, email="second@example.com") is False
        db_session.commit()

        rows = db_session.query(ReviewJob).filter(ReviewJob.order_id == "A1").all()
        assert len(rows) == 1
        assert rows[0].email == "first@example.com"

    def test_duplicate_does_not_reset_state(self, db_session):
        _insert(db_session)
        mark_sent(db_session, "A1", NOW)
        db_session.commit()

        _insert(db_session)
        db_session.commit()

        assert get_job_by_order_id(db_session, "A1").sent_at == NOW

    def test_rejects_empty_order_id(self, db_session):
        with pytest.raises(ValueError):
            _insert(db_session, order_id="  ")

    def test_rejects_empty_email(self, db_session):
        with pytest.raises(ValueError):
            _insert(db_session, email="")


class TestDueJobs:
    def test_returns_due_unsent_uncanceled(self, db_session, make_job):
        due = make_job(send_after=NOW - timedelta(minutes=1))
        make_job(send_after=NOW + timedelta(minutes=1))
        make_job(send_after=NOW - timedelta(days=1), canceled=True)
        make_job(send_after=NOW - timedelta(days=1), sent_at=NOW - timedelta(hours=1))

        assert [j.id for j in due_jobs(db_session, NOW)] == [due.id]

    def test_send_after_equal_to_now_is_due(self, db_session, make_job):
        job = make_job(send_after=NOW)
        assert [j.id for j in due_jobs(db_session, NOW)] == [job.id]

    def test_orders_by_send_after_ascending(self, db_session, make_job):
        later = make_job(send_after=NOW - timedelta(hours=1))
        earliest = make_job(send_after=NOW - timedelta(days=3))
        middle = make_job(send_after=NOW - timedelta(days=1))

        assert [j.id for j in due_jobs(db_session, NOW)] == [earliest.id, middle.id, later.id]

    def test_errored_rows_are_retried(self, db_session, make_job):
        job = make_job(send_after=NOW - timedelta(days=1), last_error="timeout")
        assert [j.id for j in due_jobs(db_session, NOW)] == [job.id]

    def test_batch_is_capped_with_earliest_first(self, db_session):
        for i in range(BATCH_LIMIT + 5):
            db_session.add(
                ReviewJob(
                    order_id=f"B{i}",
                    email=f"b{i}@example.com",
                    created_at=NOW - timedelta(days=30),
                    send_after=NOW - timedelta(minutes=BATCH_LIMIT + 5 - i),
                )
            )
        db_session.commit()

        rows = due_jobs(db_session, NOW)
        assert len(rows) == BATCH_LIMIT
        assert rows[0].order_id == "B0"
        assert "B104" not in {r.order_id for r in rows}

    def test_unrecorded_row_comes_back_next_poll(self, db_session, make_job):
        job = make_job(send_after=NOW - timedelta(days=1))
        assert [j.id for j in due_jobs(db_session, NOW)] == [job.id]
        assert [j.id for j in due_jobs(db_session, NOW + timedelta(minutes=1))] == [job.id]


class TestEndToEnd:
    def test_insert_wait_send(self, db_session):
        created = NOW
        insert_job(db_session, "A1", "x@y.com", "", created, created + timedelta(days=5))
        db_session.commit()

        assert due_jobs(db_session, created + timedelta(days=4)) == []

        rows = due_jobs(db_session, created + timedelta(days=5, minutes=1))
        assert [r.order_id for r in rows] == ["A1"]

        mark_sent(db_session, "A1", created + timedelta(days=5, minutes=1))
        db_session.commit()

        for offset in (timedelta(days=5, minutes=2), timedelta(days=30), timedelta(days=365)):
            assert [r for r in due_jobs(db_session, created + offset) if r.order_id == "A1"] == []


class TestReminderCandidates:
    def test_min_days_boundary(self, db_session, make_job):
        make_job(sent_at=NOW - timedelta(days=6))
        eligible = make_job(sent_at=NOW - timedelta(days=8))

        assert [j.id for j in reminder_candidates(db_session, 7, NOW)] == [eligible.id]

    def test_query_does_not_apply_max_days(self, db_session, make_job):
        old = make_job(sent_at=NOW - timedelta(days=15))
        assert [j.id for j in reminder_candidates(db_session, 7, NOW)] == [old.id]

    def test_unsent_rows_never_eligible(self, db_session, make_job):
        make_job(send_after=NOW - timedelta(days=30))
        assert reminder_candidates(db_session, 0, NOW) == []

    def test_excludes_canceled_after_sent(self, db_session, make_job):
        job = make_job(sent_at=NOW - timedelta(days=8))
        mark_canceled(db_session, job.order_id)
        db_session.commit()

        assert reminder_candidates(db_session, 7, NOW) == []

    def test_excludes_interaction(self, db_session, make_job):
        job = make_job(sent_at=NOW - timedelta(days=8))
        mark_interaction(db_session, job.id, "mandrill:click")
        db_session.commit()

        assert reminder_candidates(db_session, 7, NOW) == []

    def test_single_reminder(self, db_session, make_job):
        job = make_job(sent_at=NOW - timedelta(days=8))
        mark_reminder_sent(db_session, job.id, NOW)
        db_session.commit()
        db_session.refresh(job)

        assert job.reminder_count == 1
        assert job.reminder_sent_at == NOW
        assert reminder_candidates(db_session, 7, NOW) == []
        assert reminder_candidates(db_session, 7, NOW + timedelta(days=1)) == []

    def test_orders_by_sent_at(self, db_session, make_job):
        recent = make_job(sent_at=NOW - timedelta(days=8))
        oldest = make_job(sent_at=NOW - timedelta(days=12))

        assert [j.id for j in reminder_candidates(db_session, 7, NOW)] == [oldest.id, recent.id]


class TestOutcomeRecorder:
    def test_mark_sent_clears_error(self, db_session, make_job):
        job = make_job(last_error="timeout")
        mark_sent(db_session, job.order_id, NOW)
        db_session.commit()
        db_session.refresh(job)

        assert job.last_error is None
        assert job.sent_at == NOW

    def test_mark_sent_is_idempotent(self, db_session, make_job):
        job = make_job()
        mark_sent(db_session, job.order_id, NOW)
        mark_sent(db_session, job.order_id, NOW)
        db_session.commit()
        db_session.refresh(job)

        assert job.sent_at == NOW

    def test_mark_error_truncates_and_keeps_sent_at(self, db_session, make_job):
        job = make_job(sent_at=NOW)
        mark_error(db_session, job.order_id, "x" * 800)
        db_session.commit()
        db_session.refresh(job)

        assert len(job.last_error) == 500
        assert job.sent_at == NOW

    def test_cancel_after_send_keeps_sent_at(self, db_session, make_job):
        job = make_job()
        mark_sent(db_session, job.order_id, NOW)
        mark_canceled(db_session, job.order_id)
        db_session.commit()
        db_session.refresh(job)

        assert job.sent_at == NOW
        assert job.canceled is True

    def test_uncancel(self, db_session, make_job):
        job = make_job(canceled=True, send_after=NOW - timedelta(days=1))
        mark_uncanceled(db_session, job.order_id)
        db_session.commit()

        assert [j.id for j in due_jobs(db_session, NOW)] == [job.id]

    def test_mark_on_unknown_order_returns_false(self, db_session):
        assert mark_canceled(db_session, "missing") is False
        assert mark_sent(db_session, "missing", NOW) is False

    def test_interaction_reason_first_write_wins(self, db_session, make_job):
        job = make_job()
        mark_interaction(db_session, job.id, "mandrill:click")
        mark_interaction(db_session, job.id, "mandrill:spam")
        db_session.commit()
        db_session.refresh(job)

        assert job.has_interaction is True
        assert job.reminder_blocked_reason == "mandrill:click"

    def test_interaction_without_reason(self, db_session, make_job):
        job = make_job()
        mark_interaction(db_session, job.id)
        db_session.commit()
        db_session.refresh(job)

        assert job.has_interaction is True
        assert job.reminder_blocked_reason is None

    def test_reminder_failure_does_not_touch_last_error(self, db_session, make_job):
        job = make_job(sent_at=NOW - timedelta(days=8), last_error=None)
        mark_reminder_sent(db_session, job.id, NOW)
        db_session.commit()
        db_session.refresh(job)

        assert job.last_error is None


class TestListing:
    def test_list_filters_by_derived_status(self, db_session, make_job):
        make_job(canceled=True)
        errored = make_job(last_error="boom")
        make_job(sent_at=NOW)

        assert [j.id for j in list_jobs(db_session, JobStatus.ERROR, now=NOW)] == [errored.id]

    def test_count_by_status_includes_every_status(self, db_session, make_job):
        make_job(send_after=NOW + timedelta(days=1))
        make_job(send_after=NOW - timedelta(days=1))

        counts = count_by_status(db_session, NOW)
        assert counts["scheduled"] == 1
        assert counts["due"] == 1
        assert counts["canceled"] == 0
        assert set(counts) == {"canceled", "error", "sent-with-error", "sent", "due", "scheduled"}


class TestDeriveStatus:
    def _job(self, **overrides):
        values = {
            "order_id": "S1",
            "email": "s@example.com",
            "created_at": NOW - timedelta(days=20),
            "send_after": NOW - timedelta(days=1),
            "canceled": False,
            "sent_at": None,
            "last_error": None,
        }
        values.update(overrides)
        return ReviewJob(**values)

    def test_canceled_wins(self):
        job = self._job(canceled=True, sent_at=NOW, last_error="x")
        assert derive_status(job, NOW) is JobStatus.CANCELED

    def test_error_before_send(self):
        assert derive_status(self._job(last_error="timeout"), NOW) is JobStatus.ERROR

    def test_sent_with_error(self):
        assert derive_status(self._job(sent_at=NOW, last_error="reminder bounce"), NOW) is JobStatus.SENT_WITH_ERROR

    def test_sent(self):
        assert derive_status(self._job(sent_at=NOW), NOW) is JobStatus.SENT

    def test_due_and_scheduled(self):
        assert derive_status(self._job(send_after=NOW), NOW) is JobStatus.DUE
        assert derive_status(self._job(send_after=NOW + timedelta(seconds=1)), NOW) is JobStatus.SCHEDULED
