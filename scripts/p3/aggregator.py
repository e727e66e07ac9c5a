"""
Metrics Aggregator
===================
Folds per-employee metrics into team totals, averages and percentages for
the summary cards and the table footer. Zero denominators give 0.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List

from models.p3_models import EmployeeMetrics, TeamSummary
from scripts.lib.utils import safe_div

_TRAILING_PARENS = re.compile(r"\s*\([^)]*\)$")

SUMMED_FIELDS = (
    "meeting_count",
    "deals_won_count",
    "deals_won_amount",
    "deals_lost_count",
    "deals_lost_amount",
    "deals_in_play_under_150_count",
    "deals_in_play_under_150_amount",
    "deals_overdue_150_plus_count",
    "deals_overdue_150_plus_amount",
    "deals_without_p3_count",
)


def clean_employee_name(name: str) -> str:
    """'Rob Smith (old)' -> 'Rob Smith'. Presentation only; never used as a key."""
    return _TRAILING_PARENS.sub("", name or "").strip()


def percentage(value: float, total: float) -> float:
    """value as a percentage of total, rounded to one decimal; 0 when total is 0."""
    return round(safe_div(value, total) * 100, 1)


def sort_employees(employees: Iterable[EmployeeMetrics]) -> List[EmployeeMetrics]:
    """Most meetings first, then by raw name."""
    return sorted(employees, key=lambda m: (-m.meeting_count, m.employee_name))


def win_rate(metrics: EmployeeMetrics) -> float:
    closed = metrics.deals_won_count + metrics.deals_lost_count
    return percentage(metrics.deals_won_count, closed)


def summarize(employees: Iterable[EmployeeMetrics]) -> TeamSummary:
    """Team totals, per-employee averages, win/loss rates and top performer."""
    employees = list(employees)
    team_size = len(employees)

    totals: Dict[str, float] = {
        name: sum(getattr(m, name) for m in employees) for name in SUMMED_FIELDS
    }
    averages = {
        name: round(safe_div(total, team_size), 2) for name, total in totals.items()
    }

    closed = totals["deals_won_count"] + totals["deals_lost_count"]

    top = None
    for m in employees:
        if top is None or m.meeting_count > top.meeting_count:
            top = m

    return TeamSummary(
        employee_count=team_size,
        total_meetings=int(totals["meeting_count"]),
        totals=totals,
        averages=averages,
        win_rate_pct=percentage(totals["deals_won_count"], closed),
        loss_rate_pct=percentage(totals["deals_lost_count"], closed),
        top_performer=(top.display_name or clean_employee_name(top.employee_name)) if top else None,
        top_performer_meetings=top.meeting_count if top else 0,
    )
