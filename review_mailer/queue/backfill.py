"""Rebuild the review queue from recent DanDomain orders.

Used when webhooks were missed: every completed order created in the last
N days without a queue row gets one.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from ..integrations.dandomain import DanDomainClient, extract_contact, parse_order_timestamp
from .service import get_job_by_order_id, insert_job, schedule_send_after

logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    fetched: int = 0
    inserted: int = 0
    skipped_existing: int = 0
    skipped_no_email: int = 0
    skipped_status: int = 0


def _status_id(order: dict) -> int:
    try:
        return int((order.get("status") or {}).get("id") or 0)
    except (TypeError, ValueError):
        return 0


def backfill_orders(
    db: Session,
    orders: Iterable[dict],
    allowed_status_ids: frozenset[int],
    delay_days: int,
) -> BackfillSummary:
    summary = BackfillSummary()
    for order in orders:
        summary.fetched += 1
        order_id = str(order.get("id") or "").strip()

        if _status_id(order) not in allowed_status_ids:
            summary.skipped_status += 1
            continue

        email, name = extract_contact(order)
        if not order_id or not email:
            summary.skipped_no_email += 1
            continue

        if get_job_by_order_id(db, order_id) is not None:
            summary.skipped_existing += 1
            continue

        created_at = parse_order_timestamp(order.get("createdAt"))
        if insert_job(db, order_id, email, name, created_at, schedule_send_after(created_at, delay_days)):
            summary.inserted += 1
        else:
            summary.skipped_existing += 1
    return summary


def rebuild_queue(
    db: Session,
    client: DanDomainClient,
    days_back: int,
    allowed_status_ids: frozenset[int],
    delay_days: int,
    now: datetime | None = None,
) -> BackfillSummary:
    since = (now or datetime.now(UTC)) - timedelta(days=days_back)
    logger.info("Rebuilding queue from orders created since %s (last %d days)", since.isoformat(), days_back)
    orders = client.fetch_orders_since(since)
    summary = backfill_orders(db, orders, allowed_status_ids, delay_days)
    logger.info(
        "Backfill done: %d fetched, %d inserted, %d existing, %d without email, %d wrong status",
        summary.fetched,
        summary.inserted,
        summary.skipped_existing,
        summary.skipped_no_email,
        summary.skipped_status,
    )
    return summary
