"""
Deals without a P3 meeting
===========================
For every tracked employee, lists eligible deals they own inside the active
window whose companies were never touched by a P3 meeting in this run.
The result is a separate diagnostic and is never folded into the won /
lost / in-play / overdue totals.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError

from models.p3_models import Deal, DealDetail, EmployeeMetrics
from scripts.lib.config import Settings
from scripts.lib.errors import StoreReadError
from scripts.lib.logger import setup_logger
from scripts.lib.supabase_client import DEALS, Filter
from scripts.lib.utils import now_utc
from scripts.p3.attribution import classify_deal, deal_detail
from scripts.p3.link_graph import DEAL_COLUMNS, LinkGraph
from scripts.p3.periods import Window, annualize, date_filters

logger = setup_logger("orphans")


def is_orphaned(deal: Deal, touched_company_ids, direct_deal_ids) -> bool:
    """No P3 meeting reached the deal, directly or through one of its companies."""
    if deal.id in direct_deal_ids:
        return False
    return not (deal.associated_company_ids & touched_company_ids)


def fetch_owned_deals(store, owner: str, window: Window) -> List[Deal]:
    """Deals owned by `owner` created inside the window. Store errors propagate."""
    filters = [Filter("deal_owner", "eq", owner)] + date_filters(window)
    deals = []
    for row in store.fetch_by_filter(DEALS, filters, DEAL_COLUMNS):
        try:
            deals.append(Deal.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping malformed deal row for %s: %s", owner, e)
    return deals


def find_deals_without_p3(
    store,
    employees: Dict[str, EmployeeMetrics],
    graph: LinkGraph,
    window: Window,
    settings: Settings,
    now: Optional[datetime] = None,
) -> Dict[str, List[DealDetail]]:
    """
    Compute orphaned deals per employee and store them on the metrics.

    A failed lookup for one employee is logged and leaves that employee's
    list empty.
    """
    now = now or now_utc()
    touched = graph.touched_company_ids
    direct = set(graph.direct_deal_ids)
    result: Dict[str, List[DealDetail]] = {}

    for name in sorted(employees):
        if name == settings.unassigned_label:
            continue
        try:
            owned = fetch_owned_deals(store, name, window)
        except StoreReadError as e:
            logger.warning("Skipping deals-without-P3 lookup for %s: %s", name, e)
            continue

        orphans = []
        for deal in owned:
            if not deal.is_eligible(settings.eligible_deal_types):
                continue
            if not is_orphaned(deal, touched, direct):
                continue
            classification = classify_deal(deal, now, settings)
            value = annualize(deal.amount, window, settings.annualization_factor)
            orphans.append(deal_detail(deal, classification, value, settings))

        metrics = employees[name]
        metrics.deals_without_p3 = orphans
        metrics.deals_without_p3_count = len(orphans)
        result[name] = orphans
        if orphans:
            logger.debug("%s owns %d deals without a P3 meeting", name, len(orphans))

    logger.info(
        "Deals without P3: %d across %d employees",
        sum(len(v) for v in result.values()), len(result),
    )
    return result
