"""DanDomain and Mandrill webhook endpoints.

DanDomain does not sign its webhooks; signature checking is opt-in via
DANDOMAIN_VERIFY_SIGNATURE.
"""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import get_db
from ..dependencies import get_dandomain_client, get_session_factory
from ..rate_limit import limiter
from .service import (
    CANCELLED_TOPIC,
    cancel_order,
    extract_order_id,
    handle_mandrill_events,
    process_order_created,
    save_webhook,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _read_webhook(request: Request, kind: str) -> tuple[dict | None, JSONResponse | None]:
    """Save, verify, and decode a DanDomain webhook body."""
    raw = await request.body()
    save_webhook(kind, request.method, str(request.url), dict(request.headers), raw)

    if settings.dandomain_verify_signature and not verify_signature(
        raw, request.headers.get("x-webhook-signature"), settings.dandomain_webhook_token
    ):
        return None, JSONResponse({"ok": False, "error": "Invalid signature"}, status_code=401)

    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        return None, JSONResponse({"ok": False, "error": "Invalid JSON"}, status_code=400)
    if not isinstance(body, dict):
        body = {}
    return body, None


@router.post("/dandomain/order-created")
@limiter.limit("120/minute")
async def order_created(
    request: Request,
    background_tasks: BackgroundTasks,
    client=Depends(get_dandomain_client),
    session_factory=Depends(get_session_factory),
):
    body, error = await _read_webhook(request, "order-created")
    if error:
        return error

    order_id = extract_order_id(body)
    if not order_id:
        return JSONResponse({"ok": False, "error": "Missing id in payload"}, status_code=400)

    # Respond before the GraphQL lookup; DanDomain times out after 5 s
    background_tasks.add_task(process_order_created, order_id, client, session_factory)
    return {"ok": True, "received": order_id}


@router.post("/dandomain/order-updated")
@limiter.limit("120/minute")
async def order_updated(request: Request, db: Session = Depends(get_db)):
    body, error = await _read_webhook(request, "order-updated")
    if error:
        return error

    topic = request.headers.get("x-webhook-topic", "")
    order_id = extract_order_id(body)

    if topic == CANCELLED_TOPIC and order_id:
        try:
            cancel_order(db, order_id)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to cancel review job for order %s", order_id)
    else:
        logger.info("order-updated webhook for %s (topic=%r), no action", order_id or "?", topic)

    return {"ok": True}


@router.head("/mandrill")
def mandrill_check():
    return Response(status_code=200)


@router.post("/mandrill")
def mandrill_events(
    request: Request,
    mandrill_events: str = Form("[]"),
    db: Session = Depends(get_db),
):
    try:
        events = json.loads(mandrill_events)
    except ValueError:
        return JSONResponse({"ok": False, "error": "Invalid mandrill_events"}, status_code=400)
    if not isinstance(events, list):
        events = []

    flagged = handle_mandrill_events(db, events)
    db.commit()
    return {"ok": True, "flagged": flagged}
