from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from scribedesk.core.dedup.models import as_utc, utc_now
from scribedesk.core.errors import PolicyValidationError

SCHEDULE_PRESETS: Dict[str, str] = {
    "0 0 * * 0": "Weekly (Sunday midnight)",
    "0 0 * * 1": "Weekly (Monday midnight)",
    "0 0 1 * *": "Monthly (1st day)",
    "0 0 */7 * *": "Every 7 days",
    "0 2 * * *": "Daily (2 AM)",
}

WEEKLY_MIN_HOURS = 156
MONTHLY_MIN_HOURS = 696
DAILY_MIN_HOURS = 23


@dataclass(frozen=True)
class Schedule:
    """
    Cron-like schedule, interpreted loosely.

    Only the day-of-month and day-of-week fields drive the estimate; minute and
    hour are kept for display. A step pattern such as `*/7` in day-of-month
    counts as "monthly": this is an estimate, not a cron evaluator.
    """

    minute: str
    hour: str
    day_of_month: str
    month: str
    day_of_week: str

    @property
    def kind(self) -> str:
        if self.day_of_week != "*":
            return "weekly"
        if self.day_of_month != "*":
            return "monthly"
        return "daily"

    @property
    def label(self) -> str:
        return SCHEDULE_PRESETS.get(str(self), str(self))

    def __str__(self) -> str:
        return " ".join([self.minute, self.hour, self.day_of_month, self.month, self.day_of_week])


def parse_schedule(expr: str) -> Schedule:
    parts = str(expr or "").split()
    if len(parts) != 5:
        raise PolicyValidationError("Schedule must have five fields (minute hour day month weekday).", schedule=expr)
    return Schedule(*parts)


def should_run(schedule: str, last_run_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    sched = parse_schedule(schedule)
    if last_run_at is None:
        return True
    at = as_utc(now) if now is not None else utc_now()
    hours = (at - as_utc(last_run_at)).total_seconds() / 3600.0
    if sched.kind == "weekly":
        return hours >= WEEKLY_MIN_HOURS
    if sched.kind == "monthly":
        return hours >= MONTHLY_MIN_HOURS
    return hours >= DAILY_MIN_HOURS


def _add_month(dt: datetime) -> datetime:
    year, month = (dt.year + 1, 1) if dt.month == 12 else (dt.year, dt.month + 1)
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def next_run(schedule: str, last_run_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[datetime]:
    sched = parse_schedule(schedule)
    if last_run_at is None:
        return None
    last = as_utc(last_run_at)
    if sched.kind == "weekly":
        nxt = last + timedelta(days=7)
    elif sched.kind == "monthly":
        nxt = _add_month(last)
    else:
        nxt = last + timedelta(days=1)
    at = as_utc(now) if now is not None else utc_now()
    return nxt if nxt > at else None
