"""review-mailer CLI: queue maintenance from the command line.

Usage:
    review-mailer rebuild-queue 10     Queue review mails for the last 10 days of orders
    review-mailer jobs --status error  List jobs with a derived status
    review-mailer tables               List database tables
    review-mailer encrypt-value KEY    Encrypt a secret for the environment
"""

import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import inspect

from ..config import settings
from ..database.base import SessionLocal, engine
from ..integrations.dandomain import create_dandomain_client
from ..integrations.secrets import encrypt_value
from ..queue.backfill import rebuild_queue
from ..queue.models import JobStatus
from ..queue.service import list_jobs

app = typer.Typer(
    name="review-mailer",
    help="Review mail queue maintenance",
    no_args_is_help=True,
)

console = Console()


def _fmt(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


@app.command("rebuild-queue")
def rebuild_queue_cmd(
    days_back: int = typer.Argument(10, help="How many days of orders to look at"),
    delay_days: Optional[int] = typer.Option(None, "--delay-days", help="Days from order to first mail"),
):
    """Queue review mails for recent completed orders that have no job yet."""
    client = create_dandomain_client(settings)
    if client is None:
        console.print("[red]DanDomain is not configured (DANDOMAIN_SHOP_ID / DANDOMAIN_GRAPHQL_URL)[/red]")
        raise typer.Exit(1)

    db = SessionLocal()
    try:
        summary = rebuild_queue(
            db,
            client,
            days_back,
            settings.allowed_status_ids,
            settings.backfill_delay_days if delay_days is None else delay_days,
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        console.print(f"[red]rebuild-queue failed:[/red] {exc}")
        raise typer.Exit(1)
    finally:
        db.close()

    console.print(f"Fetched orders            : {summary.fetched}")
    console.print(f"New jobs created          : {summary.inserted}")
    console.print(f"Skipped (job exists)      : {summary.skipped_existing}")
    console.print(f"Skipped (no email)        : {summary.skipped_no_email}")
    console.print(f"Skipped (status filtered) : {summary.skipped_status}")


@app.command("jobs")
def jobs_cmd(
    status: Optional[JobStatus] = typer.Option(None, "--status", "-s", help="Filter by derived status"),
    limit: int = typer.Option(100, "--limit", "-n"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List review jobs, newest first."""
    db = SessionLocal()
    try:
        rows = [(job, job.status()) for job in list_jobs(db, status=status, limit=limit)]
    finally:
        db.close()

    if json_output:
        console.print_json(
            json.dumps(
                [
                    {
                        "id": job.id,
                        "order_id": job.order_id,
                        "email": job.email,
                        "status": st.value,
                        "send_after": job.send_after.isoformat(),
                        "sent_at": job.sent_at.isoformat() if job.sent_at else None,
                        "last_error": job.last_error,
                    }
                    for job, st in rows
                ]
            )
        )
        return

    table = Table(title="Review jobs")
    for column in ("ID", "Order", "Email", "Status", "Send after", "Sent", "Reminder", "Last error"):
        table.add_column(column)
    for job, st in rows:
        table.add_row(
            str(job.id),
            job.order_id,
            job.email,
            st.value,
            _fmt(job.send_after),
            _fmt(job.sent_at),
            _fmt(job.reminder_sent_at),
            (job.last_error or "")[:60],
        )
    console.print(table)


@app.command("tables")
def tables_cmd():
    """List the tables in the configured database."""
    console.print(f"Database: {settings.database_url}")
    for name in sorted(inspect(engine).get_table_names()):
        console.print(f"  {name}")


@app.command("encrypt-value")
def encrypt_value_cmd(value: str = typer.Argument(..., help="Plain value, e.g. a Mandrill API key")):
    """Encrypt a secret with SECRET_KEY for use in the environment."""
    typer.echo(encrypt_value(value))


if __name__ == "__main__":
    app()
