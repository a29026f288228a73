"""Admin pages (SSR): queue listing and job actions."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from ..audit.service import audit, recent_audit_logs
from ..auth.models import User
from ..database.base import get_db
from ..dependencies import get_current_user, get_mail_sender
from ..mailer.service import MailSender
from ..queue.models import JobStatus
from ..queue.service import count_by_status, get_job, list_jobs, mark_canceled, mark_uncanceled
from .service import resend_job

router = APIRouter(tags=["admin"])


def _flash(request: Request) -> dict:
    """Pop flash messages from the session."""
    return {
        "error": request.session.pop("flash_error", None),
        "message": request.session.pop("flash_message", None),
    }


def _back(status: str | None = None) -> RedirectResponse:
    url = f"/admin/jobs?status={status}" if status else "/admin/jobs"
    return RedirectResponse(url=url, status_code=303)


def _parse_status(value: str | None) -> JobStatus | None:
    if not value:
        return None
    try:
        return JobStatus(value)
    except ValueError:
        return None


@router.get("/")
def index():
    return RedirectResponse(url="/admin/jobs", status_code=303)


@router.get("/admin/jobs", response_class=HTMLResponse)
def jobs_page(
    request: Request,
    status: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    templates = request.app.state.templates
    flash = _flash(request)
    now = datetime.now(UTC)
    selected = _parse_status(status)

    jobs = list_jobs(db, status=selected, now=now)

    return templates.TemplateResponse(
        request,
        "jobs.html",
        {
            "user": user,
            "active_page": "jobs",
            "jobs": [(job, job.status(now)) for job in jobs],
            "counts": count_by_status(db, now),
            "statuses": list(JobStatus),
            "selected_status": selected.value if selected else "",
            "audit_logs": recent_audit_logs(db),
            "error": flash["error"],
            "message": flash["message"],
        },
    )


@router.post("/admin/jobs/{job_id}/cancel")
def cancel_job_action(
    request: Request,
    job_id: int,
    status: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = get_job(db, job_id)
    if not job:
        request.session["flash_error"] = f"Job {job_id} not found"
        return _back(status)
    mark_canceled(db, job.order_id)
    audit(db, request, "job_cancel", f"job={job_id}, order={job.order_id}")
    db.commit()
    request.session["flash_message"] = f"Order {job.order_id} canceled"
    return _back(status)


@router.post("/admin/jobs/{job_id}/uncancel")
def uncancel_job_action(
    request: Request,
    job_id: int,
    status: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = get_job(db, job_id)
    if not job:
        request.session["flash_error"] = f"Job {job_id} not found"
        return _back(status)
    mark_uncanceled(db, job.order_id)
    audit(db, request, "job_uncancel", f"job={job_id}, order={job.order_id}")
    db.commit()
    request.session["flash_message"] = f"Order {job.order_id} reactivated"
    return _back(status)


@router.post("/admin/jobs/{job_id}/resend")
def resend_job_action(
    request: Request,
    job_id: int,
    status: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    sender: MailSender = Depends(get_mail_sender),
):
    job = get_job(db, job_id)
    if not job:
        request.session["flash_error"] = f"Job {job_id} not found"
        return _back(status)
    order_id = job.order_id
    outcome = resend_job(db, sender, job)
    audit(db, request, "job_resend", f"job={job_id}, order={order_id}, ok={outcome.ok}")
    db.commit()
    if outcome.ok:
        request.session["flash_message"] = f"Review mail for order {order_id} sent"
    else:
        request.session["flash_error"] = f"Resend for order {order_id} failed: {outcome.error}"
    return _back(status)
