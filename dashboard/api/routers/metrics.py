"""
P3 Dashboard — Metrics Router
===============================
Per-employee P3 attribution metrics computed live from the record store.

Endpoints:
  GET /api/metrics/employees   - Full dashboard (employees, summary, diagnostics)
  GET /api/metrics/summary     - Team-level summary only

Query params on both:
  time_period  all_time | year_to_date | month_to_date (default all_time)
  month        YYYY-MM, only used with month_to_date
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard.api.dependencies import compute, get_settings, get_store
from models.p3_models import DashboardMetrics, TeamSummary, TimePeriod
from scripts.lib.config import Settings
from scripts.lib.logger import setup_logger
from scripts.p3.service import compute_dashboard

logger = setup_logger("metrics_router")

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


@router.get("/employees", response_model=DashboardMetrics)
async def employee_metrics(
    time_period: str = Query(TimePeriod.ALL_TIME.value, description="Time period selector"),
    month: Optional[str] = Query(None, description="Target month (YYYY-MM) for month_to_date"),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Per-employee won / lost / in-play / overdue metrics for P3 meetings."""
    logger.info("Employee metrics requested: period=%s month=%s", time_period, month)
    return await compute(
        compute_dashboard, store, time_period, month,
        settings=settings,
    )


@router.get("/summary", response_model=TeamSummary)
async def team_summary(
    time_period: str = Query(TimePeriod.ALL_TIME.value, description="Time period selector"),
    month: Optional[str] = Query(None, description="Target month (YYYY-MM) for month_to_date"),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Team totals, averages, win/loss rates and top performer."""
    dashboard = await compute(
        compute_dashboard, store, time_period, month,
        settings=settings, include_orphans=False,
    )
    return dashboard.summary
