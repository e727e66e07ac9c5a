"""
Removed-deals audit
====================
Compares the current attribution policy with the legacy one for a set of
employees and lists the deals the legacy policy would have credited but the
current run did not claim.

Legacy candidates per employee:
  - eligible deals linked directly from the employee's meetings
  - eligible deals of companies one hop away (related companies) from the
    meetings' companies, by array overlap and by scalar company column
  - eligible deals whose Contacts_fk_Contacts overlaps the meetings' contacts
"""
from __future__ import annotations

import re
from typing import Dict, List, Sequence

from models.p3_models import (
    Deal,
    EmployeeRemovedDeals,
    Meeting,
    RemovedDeal,
    RemovedDealsReport,
)
from scripts.lib.config import Settings
from scripts.lib.errors import InvalidQueryError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import unique
from scripts.p3.attribution import ClaimedDealRegistry
from scripts.p3.link_graph import LinkGraph, LinkGraphResolver
from scripts.p3.periods import Window

logger = setup_logger("removed_deals")


def compile_employee_query(query: str) -> re.Pattern:
    try:
        return re.compile(query, re.IGNORECASE)
    except re.error as e:
        raise InvalidQueryError(query, e) from e


def _removed(deal: Deal) -> RemovedDeal:
    return RemovedDeal(
        id=deal.id,
        name=deal.deal_name,
        companies=deal.company,
        type=deal.deal_type,
        stage=deal.deal_stage,
        create_date=deal.create_date,
        amount=deal.amount,
    )


def legacy_candidates(
    meetings: Sequence[Meeting],
    graph: LinkGraph,
    resolver: LinkGraphResolver,
    settings: Settings,
) -> Dict[str, Deal]:
    """Eligible deals the legacy policy would consider for these meetings."""
    eligible = settings.eligible_deal_types
    candidates: Dict[str, Deal] = {}

    for meeting in meetings:
        for deal_id in unique(meeting.deal_ids):
            deal = graph.deals.get(deal_id)
            if deal and deal.is_eligible(eligible):
                candidates.setdefault(deal_id, deal)

    related_ids: List[str] = []
    for meeting in meetings:
        for company_id in meeting.company_ids:
            related_ids.extend(sorted(graph.related_companies(company_id, max_hops=1)))
    related_ids = unique(related_ids)

    contact_ids = unique(pid for m in meetings for pid in m.contact_ids)

    fetched = resolver.fetch_deals_for_companies(related_ids) if related_ids else []
    if contact_ids:
        fetched += resolver.fetch_deals_for_contacts(contact_ids)

    for deal in fetched:
        if deal.is_eligible(eligible):
            candidates.setdefault(deal.id, graph.deals.get(deal.id, deal))
    return candidates


def find_removed_deals(
    store,
    meetings: Sequence[Meeting],
    graph: LinkGraph,
    registry: ClaimedDealRegistry,
    employee_query: str,
    window: Window,
    settings: Settings,
) -> RemovedDealsReport:
    """
    Diff legacy candidates against the run's claimed deals for every
    employee whose raw name matches employee_query (case-insensitive regex).

    Raises:
        InvalidQueryError: If employee_query is not a valid regex.
    """
    pattern = compile_employee_query(employee_query)

    by_employee: Dict[str, List[Meeting]] = {}
    for meeting in meetings:
        by_employee.setdefault(meeting.assignee(settings.unassigned_label), []).append(meeting)

    resolver = LinkGraphResolver(store, settings)
    results: List[EmployeeRemovedDeals] = []

    for employee in sorted(name for name in by_employee if pattern.search(name)):
        candidates = legacy_candidates(by_employee[employee], graph, resolver, settings)
        removed = [
            _removed(deal)
            for deal_id, deal in sorted(candidates.items())
            if deal_id not in registry
        ]
        results.append(EmployeeRemovedDeals(employee=employee, count=len(removed), deals=removed))
        logger.info(
            "Removed-deals audit for %s: %d legacy candidates, %d not claimed",
            employee, len(candidates), len(removed),
        )

    if resolver.failed_batches:
        logger.warning("Removed-deals audit skipped %d failed batches", resolver.failed_batches)

    return RemovedDealsReport(
        employee_query=employee_query,
        time_period=window.period,
        selected_month=window.month,
        results=results,
    )
