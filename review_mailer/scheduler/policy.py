"""Reminder eligibility gates applied after the reminder query."""

from dataclasses import dataclass, field
from datetime import datetime

from ..config import Settings
from ..database.base import ensure_utc

SECONDS_PER_DAY = 86400


def days_between(start: datetime | None, end: datetime | None) -> float:
    """Fractional days from ``start`` to ``end``; infinite when either is missing."""
    if start is None or end is None:
        return float("inf")
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_DAY


@dataclass(frozen=True)
class ReminderPolicy:
    min_days: float = 7
    max_days: float = 14
    whitelist: frozenset[str] = field(default_factory=frozenset)
    whitelist_enabled: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "ReminderPolicy":
        return cls(
            min_days=s.reminder_min_days,
            max_days=s.reminder_max_days,
            whitelist=s.reminder_whitelist_set,
            whitelist_enabled=s.reminder_whitelist_enabled,
        )

    def within_window(self, sent_at: datetime | None, now: datetime) -> bool:
        """Upper bound of the reminder window (the lower bound is in SQL)."""
        return days_between(sent_at, now) <= self.max_days

    def allows(self, email: str | None) -> bool:
        """Allow-list check. Disabled or empty list lets every address through."""
        if not self.whitelist_enabled or not self.whitelist:
            return True
        normalized = (email or "").strip().lower()
        if not normalized:
            return False
        return normalized in self.whitelist
