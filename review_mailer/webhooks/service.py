"""Webhook handling: order events to queue rows, engagement events to flags."""

import base64
import hashlib
import hmac
import json
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path

from sqlalchemy.orm import Session

from ..config import settings
from ..integrations.dandomain import DanDomainClient, extract_contact, parse_order_timestamp
from ..queue.service import insert_job, mark_canceled, mark_interaction, schedule_send_after

logger = logging.getLogger(__name__)

CANCELLED_TOPIC = "orders/cancelled"
INTERACTION_EVENTS = frozenset({"click", "spam", "unsub"})
_FALLBACK_LOG_DIR = "./data/webhook-logs"


def extract_order_id(body: dict) -> str:
    for key in ("id", "orderId", "order_id"):
        value = body.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def queue_order(db: Session, order_id: str, order: dict, delay_days: int) -> bool:
    """Insert a review job for a fetched order. False when skipped or duplicate."""
    email, name = extract_contact(order)
    if not email:
        logger.warning("No email on order %s, skipping queue insert", order_id)
        return False
    created_at = parse_order_timestamp(order.get("createdAt"))
    return insert_job(
        db,
        order_id=order_id,
        email=email,
        name=name,
        created_at=created_at,
        send_after=schedule_send_after(created_at, delay_days),
    )


def process_order_created(
    order_id: str,
    client: DanDomainClient | None,
    session_factory: Callable[[], Session],
    delay_days: int | None = None,
) -> None:
    """Background work for an order-created webhook. Errors are logged only."""
    if client is None:
        logger.error("DanDomain client not configured, cannot process order %s", order_id)
        return
    delay = settings.review_delay_days if delay_days is None else delay_days

    db = session_factory()
    try:
        order = client.fetch_order_by_id(order_id)
        if not order:
            logger.warning("Order %s not found via GraphQL", order_id)
            return
        if queue_order(db, order_id, order, delay):
            logger.info("Queued review mail for order %s", order_id)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to process order-created for %s", order_id)
    finally:
        db.close()


def cancel_order(db: Session, order_id: str) -> bool:
    canceled = mark_canceled(db, order_id)
    if canceled:
        logger.info("Order %s cancelled, review job marked as canceled", order_id)
    else:
        logger.info("Order %s cancelled but no review job exists", order_id)
    return canceled


def handle_mandrill_events(db: Session, events: list) -> int:
    """Flag jobs whose recipient clicked, complained, or unsubscribed."""
    flagged = 0
    for event in events:
        if not isinstance(event, dict):
            logger.debug("Ignoring malformed Mandrill event %r", event)
            continue
        kind = event.get("event")
        if kind not in INTERACTION_EVENTS:
            continue
        msg = event.get("msg")
        metadata = msg.get("metadata") if isinstance(msg, dict) else None
        raw_id = metadata.get("review_job_id") if isinstance(metadata, dict) else None
        try:
            job_id = int(raw_id)
        except (TypeError, ValueError):
            logger.debug("Mandrill %s event without review_job_id, ignored", kind)
            continue
        if mark_interaction(db, job_id, reason=f"mandrill:{kind}"):
            flagged += 1
            logger.info("Job %d marked as interacted (%s)", job_id, kind)
    return flagged


def verify_signature(raw_body: bytes, signature: str | None, token: str) -> bool:
    """Check a base64 HMAC-SHA256 signature of the raw request body."""
    if not signature or not token:
        return False
    expected = base64.b64encode(hmac.new(token.encode(), raw_body, hashlib.sha256).digest()).decode()
    return hmac.compare_digest(expected, signature)


@lru_cache(maxsize=1)
def webhook_log_dir() -> Path | None:
    for candidate in (settings.webhook_log_dir, _FALLBACK_LOG_DIR):
        try:
            path = Path(candidate)
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Webhook log dir %s not writable: %s", candidate, exc)
            continue
        return path
    return None


def save_webhook(kind: str, method: str, url: str, headers: dict, raw_body: bytes) -> Path | None:
    """Store a received webhook as JSON for later inspection (best effort)."""
    log_dir = webhook_log_dir()
    if log_dir is None:
        return None
    ts = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%f")
    target = log_dir / f"{ts}-{kind}-{secrets.token_hex(3)}.json"
    raw = raw_body.decode("utf-8", errors="replace")
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        body = None
    try:
        target.write_text(
            json.dumps(
                {"headers": headers, "method": method, "url": url, "rawBody": raw, "body": body},
                indent=2,
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning("Could not save %s webhook: %s", kind, exc)
        return None
    return target
