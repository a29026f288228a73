"""Administrative operations on review jobs."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from ..mailer.service import MailSender
from ..queue.models import ReviewJob
from ..queue.service import mark_error, mark_sent

logger = logging.getLogger(__name__)


@dataclass
class ResendOutcome:
    ok: bool
    error: str | None = None


def resend_job(db: Session, sender: MailSender, job: ReviewJob) -> ResendOutcome:
    """Send the first review mail now, regardless of send_after.

    The outcome is recorded exactly like a scheduled send.
    """
    try:
        accepted = sender.send_review_email(job.email, job.name, job.id, is_reminder=False)
        error = None if accepted else "Mail provider did not accept the message"
    except Exception as exc:
        error = str(exc) or exc.__class__.__name__

    if error:
        mark_error(db, job.order_id, error)
        logger.warning("Manual resend failed for order %s: %s", job.order_id, error)
        return ResendOutcome(ok=False, error=error)

    mark_sent(db, job.order_id, datetime.now(UTC))
    logger.info("Manual resend succeeded for order %s", job.order_id)
    return ResendOutcome(ok=True)
