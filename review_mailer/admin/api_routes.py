"""Review job JSON API and DanDomain debug endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..auth.models import User
from ..database.base import get_db
from ..dependencies import get_current_user, get_dandomain_client, get_mail_sender
from ..integrations.dandomain import DanDomainClient, DanDomainError
from ..mailer.service import MailSender
from ..queue.models import JobStatus
from ..queue.service import count_by_status, get_job, list_jobs, mark_canceled, mark_interaction, mark_uncanceled
from .schemas import InteractionRequest, JobListResponse, JobResponse
from .service import resend_job

router = APIRouter(tags=["jobs"])
debug_router = APIRouter(prefix="/debug", tags=["debug"])


def _not_found(job_id: int) -> JSONResponse:
    return JSONResponse({"error": f"Job {job_id} not found"}, status_code=404)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs_api(
    status: JobStatus | None = None,
    limit: int = 500,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    now = datetime.now(UTC)
    jobs = list_jobs(db, status=status, limit=limit, now=now)
    return JobListResponse(
        jobs=[JobResponse.from_job(j, now) for j in jobs],
        counts=count_by_status(db, now),
    )


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job_api(
    job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = get_job(db, job_id)
    if not job:
        return _not_found(job_id)
    return JobResponse.from_job(job)


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
def cancel_job_api(
    request: Request,
    job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = get_job(db, job_id)
    if not job:
        return _not_found(job_id)
    mark_canceled(db, job.order_id)
    audit(db, request, "job_cancel", f"job={job_id}, order={job.order_id}")
    db.commit()
    db.refresh(job)
    return JobResponse.from_job(job)


@router.post("/jobs/{job_id}/uncancel", response_model=JobResponse)
def uncancel_job_api(
    request: Request,
    job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = get_job(db, job_id)
    if not job:
        return _not_found(job_id)
    mark_uncanceled(db, job.order_id)
    audit(db, request, "job_uncancel", f"job={job_id}, order={job.order_id}")
    db.commit()
    db.refresh(job)
    return JobResponse.from_job(job)


@router.post("/jobs/{job_id}/resend")
def resend_job_api(
    request: Request,
    job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    sender: MailSender = Depends(get_mail_sender),
):
    job = get_job(db, job_id)
    if not job:
        return _not_found(job_id)
    outcome = resend_job(db, sender, job)
    audit(db, request, "job_resend", f"job={job_id}, order={job.order_id}, ok={outcome.ok}")
    db.commit()
    db.refresh(job)
    return JSONResponse(
        {"ok": outcome.ok, "error": outcome.error, "job": JobResponse.from_job(job).model_dump(mode="json")},
        status_code=200 if outcome.ok else 502,
    )


@router.post("/jobs/{job_id}/interaction", response_model=JobResponse)
def interaction_api(
    request: Request,
    job_id: int,
    payload: InteractionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not mark_interaction(db, job_id, payload.reason):
        return _not_found(job_id)
    audit(db, request, "job_interaction", f"job={job_id}, reason={payload.reason or ''}")
    db.commit()
    return JobResponse.from_job(get_job(db, job_id))


# ── DanDomain debugging ───────────────────────────────────────────────


@debug_router.get("/oauth")
def debug_oauth(
    client: DanDomainClient | None = Depends(get_dandomain_client),
    user: User = Depends(get_current_user),
):
    if client is None:
        return JSONResponse({"ok": False, "error": "DanDomain not configured"}, status_code=503)
    try:
        token = client.tokens.get_token()
    except DanDomainError as exc:
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=500)
    return {"ok": True, "token": token[:20] + "..."}


@debug_router.get("/gql")
def debug_gql(
    id: str = "",
    client: DanDomainClient | None = Depends(get_dandomain_client),
    user: User = Depends(get_current_user),
):
    if not id:
        return JSONResponse({"ok": False, "error": "Missing ?id="}, status_code=400)
    if client is None:
        return JSONResponse({"ok": False, "error": "DanDomain not configured"}, status_code=503)
    try:
        order = client.fetch_order_by_id(id)
    except DanDomainError as exc:
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=500)
    return {"ok": True, "order": order}
