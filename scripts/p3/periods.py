"""
Time-period selector for the P3 dashboard.

all_time      -> no window, amounts annualised
year_to_date  -> [Jan 1 of the current year, now), amounts annualised
month_to_date -> [1st of target month, 1st of next month), amounts as-is
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from models.p3_models import PeriodWindow, TimePeriod
from scripts.lib.errors import InvalidPeriodError
from scripts.lib.supabase_client import Filter
from scripts.lib.utils import now_utc

MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

PERIOD_LABELS = {
    TimePeriod.ALL_TIME: "All Time (Annualized)",
    TimePeriod.YEAR_TO_DATE: "Year to Date (Annualized)",
    TimePeriod.MONTH_TO_DATE: "Month to Date",
}


@dataclass(frozen=True)
class Window:
    period: TimePeriod
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    month: Optional[str] = None

    @property
    def annualized(self) -> bool:
        return self.period in (TimePeriod.ALL_TIME, TimePeriod.YEAR_TO_DATE)

    def contains(self, dt: Optional[datetime]) -> bool:
        """True when dt falls inside [start, end). Unbounded windows accept anything."""
        if self.start is None and self.end is None:
            return True
        if dt is None:
            return False
        if self.start is not None and dt < self.start:
            return False
        if self.end is not None and dt >= self.end:
            return False
        return True

    def to_model(self) -> PeriodWindow:
        return PeriodWindow(
            period=self.period,
            month=self.month,
            start=self.start.isoformat() if self.start else None,
            end=self.end.isoformat() if self.end else None,
            annualized=self.annualized,
            label=PERIOD_LABELS[self.period],
        )


def coerce_period(value) -> TimePeriod:
    """Accept a TimePeriod or its string value."""
    if isinstance(value, TimePeriod):
        return value
    try:
        return TimePeriod(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(p.value for p in TimePeriod)
        raise InvalidPeriodError(
            f"Unknown time period '{value}' (expected one of: {allowed})", value=str(value),
        ) from e


def parse_month(month: str) -> tuple[int, int]:
    """Parse 'YYYY-MM' into (year, month)."""
    match = MONTH_RE.match((month or "").strip())
    if not match:
        raise InvalidPeriodError(f"Month must look like YYYY-MM, got '{month}'", value=month)
    year, mon = int(match.group(1)), int(match.group(2))
    if not 1 <= mon <= 12:
        raise InvalidPeriodError(f"Month out of range: '{month}'", value=month)
    return year, mon


def resolve_window(period, month: Optional[str] = None,
                   now: Optional[datetime] = None) -> Window:
    """
    Turn a period selector into a concrete [start, end) window.

    The month argument only matters for month_to_date; without it the
    current calendar month is used.
    """
    period = coerce_period(period)
    now = now or now_utc()

    if period == TimePeriod.ALL_TIME:
        return Window(period)

    if period == TimePeriod.YEAR_TO_DATE:
        start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        return Window(period, start=start, end=now)

    if month:
        year, mon = parse_month(month)
    else:
        year, mon = now.year, now.month
    start = datetime(year, mon, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if mon == 12 else \
        datetime(year, mon + 1, 1, tzinfo=timezone.utc)
    return Window(period, start=start, end=end, month=f"{year:04d}-{mon:02d}")


def annualize(amount: Optional[float], window: Window, factor: int = 12) -> float:
    """Project a monthly amount to a yearly figure for annualised windows."""
    value = float(amount or 0)
    return value * factor if window.annualized else value


def date_filters(window: Window, column: str = "create_date") -> List[Filter]:
    """Store predicates restricting `column` to the window."""
    filters = []
    if window.start is not None:
        filters.append(Filter(column, "gte", window.start.isoformat()))
    if window.end is not None:
        filters.append(Filter(column, "lt", window.end.isoformat()))
    return filters
