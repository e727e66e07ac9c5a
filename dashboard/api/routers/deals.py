"""
P3 Dashboard — Deals Router
=============================
Deal-level diagnostics that sit beside the attribution totals.

Endpoints:
  GET /api/deals/without-p3   - Owned eligible deals no P3 meeting touched
  GET /api/deals/removed      - Deals the legacy attribution would have credited
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard.api.dependencies import compute, get_settings, get_store, to_http_error
from models.p3_models import RemovedDealsReport, TimePeriod
from scripts.lib.config import Settings
from scripts.lib.errors import InvalidQueryError
from scripts.lib.logger import setup_logger
from scripts.p3.removed_deals import compile_employee_query
from scripts.p3.service import compute_dashboard, compute_removed_deals

logger = setup_logger("deals_router")

router = APIRouter(prefix="/api/deals", tags=["deals"])


@router.get("/without-p3")
async def deals_without_p3(
    time_period: str = Query(TimePeriod.ALL_TIME.value, description="Time period selector"),
    month: Optional[str] = Query(None, description="Target month (YYYY-MM) for month_to_date"),
    employee: Optional[str] = Query(None, description="Case-insensitive regex on employee name"),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Eligible deals owned by each employee with no P3 meeting on their companies."""
    pattern = None
    if employee:
        try:
            pattern = compile_employee_query(employee)
        except InvalidQueryError as e:
            raise to_http_error(e) from e

    dashboard = await compute(compute_dashboard, store, time_period, month, settings=settings)

    employees = []
    for metrics in dashboard.employees:
        if metrics.employee_name == settings.unassigned_label:
            continue
        if pattern and not pattern.search(metrics.employee_name):
            continue
        employees.append({
            "employee": metrics.employee_name,
            "display_name": metrics.display_name,
            "count": metrics.deals_without_p3_count,
            "deals": [d.model_dump() for d in metrics.deals_without_p3],
        })

    return {
        "time_period": dashboard.window.period.value,
        "selected_month": dashboard.window.month,
        "employees": employees,
        "total": sum(e["count"] for e in employees),
    }


@router.get("/removed", response_model=RemovedDealsReport)
async def removed_deals(
    employee: str = Query(..., min_length=1, description="Case-insensitive regex on employee name"),
    time_period: str = Query(TimePeriod.ALL_TIME.value, description="Time period selector"),
    month: Optional[str] = Query(None, description="Target month (YYYY-MM) for month_to_date"),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Audit which deals the current policy no longer credits, per matching employee."""
    logger.info("Removed-deals audit requested: employee=%s period=%s", employee, time_period)
    return await compute(
        compute_removed_deals, store, employee, time_period, month,
        settings=settings,
    )
