"""Review email delivery through the Mandrill transactional API.

Provides MandrillMailSender (real delivery) and DisabledMailSender (used when
MAILER_ENABLED is off). Senders return True only when the provider accepted
the message; transport failures raise TransientSendError.
"""

import logging
import re
from pathlib import Path
from typing import Protocol

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..config import Settings, settings
from ..integrations.secrets import reveal

logger = logging.getLogger(__name__)

_EMAIL_TEMPLATE_DIR = Path(__file__).parent.parent.parent / "frontend" / "templates" / "email"

REVIEW_SUBJECT = "Havde du en femstjernet oplevelse med Smartphoneshop.dk?"
REMINDER_SUBJECT = "Har du et øjeblik til at anmelde dit køb hos Smartphoneshop.dk?"
ACCEPTED_STATUSES = frozenset({"sent", "queued", "scheduled"})

_FROM_RE = re.compile(r"^\s*([^<]+?)\s*<\s*([^>]+)\s*>\s*$")


class TransientSendError(Exception):
    """The mail provider could not be reached or answered with an error."""


class MailSender(Protocol):
    """Email-send capability used by the scheduler and admin resend."""

    def send_review_email(self, to_email: str, to_name: str, job_id: int | None, is_reminder: bool = False) -> bool: ...


def parse_from(raw: str, explicit_name: str = "") -> tuple[str, str]:
    """Split FROM_EMAIL ("Name <addr>" or bare address) into (email, name)."""
    m = _FROM_RE.match(raw or "")
    if m:
        name, email = m.groups()
        return email.strip(), explicit_name or name.strip()
    return (raw or "").strip(), explicit_name or ""


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


_env = Environment(
    loader=FileSystemLoader(str(_EMAIL_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_review_email(name: str, is_reminder: bool = False, cfg: Settings = settings) -> str:
    template = _env.get_template("reminder.html" if is_reminder else "review.html")
    return template.render(
        name=name or "",
        google_url=cfg.google_url or "#",
        pricerunner_url=cfg.pricerunner_url or "#",
        trustpilot_url=cfg.trustpilot_url or "#",
    )


def build_message(
    to_email: str,
    to_name: str,
    job_id: int | None,
    is_reminder: bool = False,
    cfg: Settings = settings,
) -> dict:
    """Build the Mandrill ``message`` payload."""
    from_email, from_name = parse_from(cfg.from_email, cfg.from_name)
    message = {
        "from_email": from_email,
        "subject": REMINDER_SUBJECT if is_reminder else REVIEW_SUBJECT,
        "to": [{"email": to_email, "name": to_name or "", "type": "to"}],
        "html": render_review_email(to_name, is_reminder, cfg),
        "auto_text": True,
        "preserve_recipients": False,
        "headers": {"X-Review-Mail": "true"},
        "tags": ["review-reminder" if is_reminder else "review-request"],
        "track_opens": True,
        "track_clicks": True,
    }
    if from_name:
        message["from_name"] = from_name
    if job_id:
        message["metadata"] = {"review_job_id": str(job_id)}
    return message


class MandrillMailSender:
    """Mandrill-backed sender. ``async: false`` gives per-recipient status."""

    def __init__(self, api_key: str, api_url: str = settings.mandrill_api_url, client: httpx.Client | None = None) -> None:
        self._api_key = api_key
        self._api_url = api_url.rstrip("/")
        self._client = client or httpx.Client(timeout=30)

    def send_review_email(self, to_email: str, to_name: str, job_id: int | None, is_reminder: bool = False) -> bool:
        normalized_to = normalize_email(to_email)
        if not normalized_to:
            logger.warning("Missing recipient address, not sending (job=%s)", job_id)
            return False

        message = build_message(normalized_to, to_name, job_id, is_reminder)
        logger.info(
            "Sending %s via Mandrill to %s (job=%s)",
            "reminder" if is_reminder else "review mail",
            normalized_to,
            job_id,
        )

        try:
            response = self._client.post(
                f"{self._api_url}/messages/send.json",
                json={"key": self._api_key, "message": message, "async": False},
            )
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Mandrill request failed for %s: %s", normalized_to, exc)
            raise TransientSendError(f"Mandrill request failed: {exc}") from exc

        first = result[0] if isinstance(result, list) and result else None
        if first is None:
            return True
        if first.get("status") in ACCEPTED_STATUSES:
            return True

        logger.warning(
            "Mandrill did not send to %s: status=%s reject_reason=%s",
            normalized_to,
            first.get("status"),
            first.get("reject_reason"),
        )
        return False


class DisabledMailSender:
    """Sender used when MAILER_ENABLED is off: never delivers, never marks sent."""

    def send_review_email(self, to_email: str, to_name: str, job_id: int | None, is_reminder: bool = False) -> bool:
        logger.info("MAILER_ENABLED is off, would have sent review mail to %s (job=%s)", normalize_email(to_email), job_id)
        return False


def create_mail_sender(cfg: Settings = settings) -> MailSender:
    """Factory: create the appropriate sender based on configuration."""
    if not cfg.mailer_enabled:
        return DisabledMailSender()
    if not cfg.mandrill_api_key:
        logger.warning("MAILER_ENABLED is on but MANDRILL_API_KEY is missing, mail sending disabled")
        return DisabledMailSender()
    return MandrillMailSender(reveal(cfg.mandrill_api_key), cfg.mandrill_api_url)
