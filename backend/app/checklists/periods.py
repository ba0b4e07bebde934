"""
Completion period tokens.

The app records a recurring checklist as done for a period by appending
the period's token to ``completedPeriods``:

    monthly  "month-2025-08"
    weekly   "week-2025-W31"

Both sides must derive identical tokens, so the weekly token pairs the
calendar year with the ISO week number exactly as the app does (around
New Year this can differ from the ISO week-year).
"""

from datetime import date, datetime, timezone
from typing import Optional, Union

from backend.app.checklists.models import Frequency


def iso_week_number(day: Union[date, datetime]) -> int:
    return day.isocalendar()[1]


def current_period(frequency: str, now: Optional[datetime] = None) -> str:
    """Token for the period containing ``now`` (UTC); "" for non-recurring."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)

    if frequency == Frequency.MONTHLY.value:
        return f"month-{now.year}-{now.month:02d}"
    if frequency == Frequency.WEEKLY.value:
        return f"week-{now.year}-W{iso_week_number(now):02d}"
    return ""
