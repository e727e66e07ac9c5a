"""
P3 Dashboard Service
=====================
Runs one aggregation end to end:

    select meetings -> resolve link graph -> attribute deals
                    -> deals without P3 -> summarize

Every run builds its own lookup maps and claim registry, so concurrent runs
for different requests never share state.

Usage:
    from scripts.p3.service import compute_dashboard
    dashboard = compute_dashboard(RecordStore(), "year_to_date")
"""
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from models.p3_models import DashboardMetrics, Meeting, RemovedDealsReport
from scripts.lib.config import Settings, load_settings
from scripts.lib.errors import ComputationCancelledError, ComputationTimeoutError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import now_utc
from scripts.p3.aggregator import sort_employees, summarize
from scripts.p3.attribution import AttributionEngine, AttributionResult
from scripts.p3.link_graph import LinkGraph, resolve_link_graph
from scripts.p3.meeting_selector import select_p3_meetings
from scripts.p3.orphans import find_deals_without_p3
from scripts.p3.periods import Window, resolve_window
from scripts.p3.removed_deals import compile_employee_query, find_removed_deals

logger = setup_logger("p3_service")


def _check_cancelled(cancelled: Optional[threading.Event], step: str) -> None:
    if cancelled is not None and cancelled.is_set():
        logger.info("Run abandoned before %s", step)
        raise ComputationCancelledError(step)


@dataclass
class AttributionRun:
    """Intermediate state of one run, kept for the audit endpoints."""
    window: Window
    now: datetime
    meetings: List[Meeting]
    graph: LinkGraph
    attribution: AttributionResult


def run_attribution(
    store,
    period,
    month: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancelled: Optional[threading.Event] = None,
) -> AttributionRun:
    """Selector, resolver and engine for one period."""
    settings = settings or load_settings()
    now = now or now_utc()
    window = resolve_window(period, month, now)

    meetings = select_p3_meetings(store, window, settings, sleep=sleep)
    _check_cancelled(cancelled, "link_graph")
    graph = resolve_link_graph(store, meetings, settings)
    _check_cancelled(cancelled, "attribution")
    attribution = AttributionEngine(graph, window, settings, now=now).run(meetings)
    return AttributionRun(window, now, meetings, graph, attribution)


def compute_dashboard(
    store,
    period,
    month: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    include_orphans: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    cancelled: Optional[threading.Event] = None,
) -> DashboardMetrics:
    """
    Full per-employee metrics for a period.

    Raises:
        InvalidPeriodError: Unknown period or malformed month.
        MetricsComputationError: Meeting selection failed after retries.
        ComputationCancelledError: `cancelled` was set between steps.
    """
    settings = settings or load_settings()
    started = time.monotonic()
    run = run_attribution(
        store, period, month, now, settings, sleep=sleep, cancelled=cancelled,
    )
    employees = run.attribution.employees

    if include_orphans:
        _check_cancelled(cancelled, "deals_without_p3")
        find_deals_without_p3(store, employees, run.graph, run.window, settings, now=run.now)

    ordered = sort_employees(employees.values())
    dashboard = DashboardMetrics(
        window=run.window.to_model(),
        employees=ordered,
        summary=summarize(ordered),
        meetings_without_deals=run.attribution.meetings_without_deals,
        diagnostics={
            "meetings": len(run.meetings),
            "companies": len(run.graph.companies),
            "deals": len(run.graph.deals),
            "claimed_deals": len(run.attribution.registry),
            "failed_batches": run.graph.failed_batches,
        },
        generated_at=run.now.isoformat(),
    )
    logger.info(
        "Dashboard computed for %s in %.2fs: %d employees, %d meetings",
        run.window.period.value, time.monotonic() - started,
        len(ordered), len(run.meetings),
    )
    return dashboard


def compute_removed_deals(
    store,
    employee_query: str,
    period,
    month: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancelled: Optional[threading.Event] = None,
) -> RemovedDealsReport:
    """Removed-deals audit for employees matching employee_query."""
    settings = settings or load_settings()
    compile_employee_query(employee_query)
    run = run_attribution(
        store, period, month, now, settings, sleep=sleep, cancelled=cancelled,
    )
    _check_cancelled(cancelled, "removed_deals")
    return find_removed_deals(
        store, run.meetings, run.graph, run.attribution.registry,
        employee_query, run.window, settings,
    )


async def run_with_timeout(
    func: Callable,
    *args,
    timeout: float,
    cancelled: Optional[threading.Event] = None,
    **kwargs,
):
    """
    Run a blocking computation in a worker thread, bounded by timeout.

    A thread cannot be killed, so when `cancelled` is given it is passed on
    to func and set on timeout; the service functions check it between steps
    and stop issuing store reads.

    Raises:
        ComputationTimeoutError: When the computation does not finish in time.
            The partial result is discarded.
    """
    if cancelled is not None:
        kwargs["cancelled"] = cancelled
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout)
    except asyncio.TimeoutError as e:
        if cancelled is not None:
            cancelled.set()
        logger.error("%s timed out after %.1fs", getattr(func, "__name__", "call"), timeout)
        raise ComputationTimeoutError(timeout) from e
