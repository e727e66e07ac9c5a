"""
Deal Attribution Engine
========================
Credits deals reachable from P3 meetings to the meeting's assignee.

Per meeting (in the order given, which the selector makes deterministic):
  - meeting_count += 1 for the assignee ("Unassigned" when empty)
  - Priority 1: directly linked deals. With more than one distinct deal and
    at least one linked company, only deals sharing a company with the
    meeting are kept. A single direct deal is trusted as-is.
  - Priority 2: deals indexed under each linked company (one hop, related
    companies are not expanded). Runs even when Priority 1 found deals.
  - Priority 3 (only with contact_fallback enabled): for meetings with no
    deal or company links, deals of the companies of the meeting's contacts.

Every candidate goes through the same gate: already claimed, missing
record, ineligible deal type. A deal that passes is claimed in the run's
ClaimedDealRegistry, so it is credited to exactly one employee and one
bucket. The first meeting to claim a deal wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from models.p3_models import (
    IN_PLAY,
    LOST,
    OVERDUE,
    UNCLASSIFIED,
    WON,
    Deal,
    DealDetail,
    EmployeeMetrics,
    Meeting,
    MeetingOutcome,
)
from scripts.lib.config import Settings
from scripts.lib.logger import setup_logger
from scripts.lib.utils import now_utc, unique, whole_days_between
from scripts.p3.aggregator import clean_employee_name
from scripts.p3.link_graph import LinkGraph
from scripts.p3.periods import Window, annualize

logger = setup_logger("attribution")

# Reasons a meeting produced no deal
NO_LINKS = "no_links"
ALREADY_CLAIMED = "already_claimed"
DEAL_NOT_FOUND = "deal_not_found"
INELIGIBLE_TYPE = "ineligible_type"
COMPANY_MISMATCH = "company_mismatch"
NO_COMPANY_DEALS = "no_company_deals"


class ClaimedDealRegistry:
    """Deal IDs already credited in this run. One registry per run."""

    def __init__(self):
        self._claimed: Dict[str, None] = {}

    def try_claim(self, deal_id: str) -> bool:
        """Claim deal_id. Returns False if it was already claimed."""
        if not deal_id or deal_id in self._claimed:
            return False
        self._claimed[deal_id] = None
        return True

    def is_claimed(self, deal_id: str) -> bool:
        return deal_id in self._claimed

    __contains__ = is_claimed

    def __len__(self) -> int:
        return len(self._claimed)

    @property
    def claimed_ids(self) -> List[str]:
        """Claimed IDs in claim order."""
        return list(self._claimed)


def classify_deal(deal: Deal, now: datetime, settings: Settings) -> str:
    """
    Bucket for a deal: won / lost by stage, otherwise in_play or overdue by
    age in whole days. Open deals without a creation date are unclassified.
    """
    if deal.deal_stage == settings.won_stage:
        return WON
    if deal.deal_stage == settings.lost_stage:
        return LOST
    created = deal.created_at
    if created is None:
        return UNCLASSIFIED
    if whole_days_between(created, now) < settings.overdue_after_days:
        return IN_PLAY
    return OVERDUE


def deal_detail(deal: Deal, classification: str, amount: float, settings: Settings) -> DealDetail:
    return DealDetail(
        id=deal.id,
        name=deal.deal_name,
        stage=deal.deal_stage,
        classification=classification,
        highlight=deal.deal_stage in settings.priority_stages,
        amount=amount,
        create_date=deal.create_date,
    )


@dataclass
class AttributionResult:
    employees: Dict[str, EmployeeMetrics]
    registry: ClaimedDealRegistry
    meetings_without_deals: List[MeetingOutcome] = field(default_factory=list)
    credited_to: Dict[str, str] = field(default_factory=dict)

    @property
    def meeting_total(self) -> int:
        return sum(m.meeting_count for m in self.employees.values())


class AttributionEngine:
    """Runs the priority policy over a set of meetings and a hydrated LinkGraph."""

    def __init__(
        self,
        graph: LinkGraph,
        window: Window,
        settings: Settings,
        now: Optional[datetime] = None,
        registry: Optional[ClaimedDealRegistry] = None,
    ):
        self.graph = graph
        self.window = window
        self.settings = settings
        self.now = now or now_utc()
        self.registry = registry if registry is not None else ClaimedDealRegistry()
        self.employees: Dict[str, EmployeeMetrics] = {}
        self.credited_to: Dict[str, str] = {}
        self.meetings_without_deals: List[MeetingOutcome] = []

    def _metrics_for(self, assignee: str) -> EmployeeMetrics:
        if assignee not in self.employees:
            self.employees[assignee] = EmployeeMetrics(
                employee_name=assignee,
                display_name=clean_employee_name(assignee),
            )
        return self.employees[assignee]

    # ─── Candidate selection ────────────────────────────────

    def _direct_candidates(self, meeting: Meeting, reasons: List[str]) -> List[str]:
        deal_ids = unique(meeting.deal_ids)
        meeting_companies = set(meeting.company_ids)
        if len(deal_ids) <= 1 or not meeting_companies:
            return deal_ids

        kept = []
        for deal_id in deal_ids:
            deal = self.graph.deals.get(deal_id)
            if deal is None:
                reasons.append(DEAL_NOT_FOUND)
            elif deal.associated_company_ids & meeting_companies:
                kept.append(deal_id)
            else:
                reasons.append(COMPANY_MISMATCH)
        return kept

    def _company_candidates(self, company_ids: Iterable[str], reasons: List[str]) -> List[str]:
        candidates: List[str] = []
        for company_id in unique(company_ids):
            deal_ids = self.graph.deals_for_company(company_id)
            if not deal_ids:
                reasons.append(NO_COMPANY_DEALS)
            candidates.extend(deal_ids)
        return candidates

    # ─── Claim + accumulate ─────────────────────────────────

    def _consider(self, deal_id: str, assignee: str, reasons: List[str]) -> bool:
        if deal_id in self.registry:
            reasons.append(ALREADY_CLAIMED)
            return False
        deal = self.graph.deals.get(deal_id)
        if deal is None:
            reasons.append(DEAL_NOT_FOUND)
            return False
        if not deal.is_eligible(self.settings.eligible_deal_types):
            reasons.append(INELIGIBLE_TYPE)
            return False
        if not self.registry.try_claim(deal_id):
            reasons.append(ALREADY_CLAIMED)
            return False

        self.credited_to[deal_id] = assignee
        self._accumulate(self._metrics_for(assignee), deal)
        return True

    def _accumulate(self, metrics: EmployeeMetrics, deal: Deal) -> None:
        bucket = classify_deal(deal, self.now, self.settings)
        if bucket == UNCLASSIFIED:
            logger.debug("Deal %s claimed without a bucket (open, no create_date)", deal.id)
            return

        value = annualize(deal.amount, self.window, self.settings.annualization_factor)
        metrics.deal_ids[bucket].append(deal.id)

        if bucket == WON:
            metrics.deals_won_count += 1
            metrics.deals_won_amount += value
            if deal.deal_name:
                metrics.deals_won_names.append(deal.deal_name)
        elif bucket == LOST:
            metrics.deals_lost_count += 1
            metrics.deals_lost_amount += value
            if deal.deal_name:
                metrics.deals_lost_names.append(deal.deal_name)
        elif bucket == IN_PLAY:
            metrics.deals_in_play_under_150_count += 1
            metrics.deals_in_play_under_150_amount += value
            if deal.deal_name:
                metrics.deals_in_play_under_150_names.append(deal.deal_name)
            metrics.deals_in_play_under_150_details.append(
                deal_detail(deal, bucket, value, self.settings)
            )
        else:
            metrics.deals_overdue_150_plus_count += 1
            metrics.deals_overdue_150_plus_amount += value
            if deal.deal_name:
                metrics.deals_overdue_150_plus_names.append(deal.deal_name)
            metrics.deals_overdue_150_plus_details.append(
                deal_detail(deal, bucket, value, self.settings)
            )

    # ─── Run ────────────────────────────────────────────────

    def process_meeting(self, meeting: Meeting) -> int:
        """Attribute one meeting. Returns the number of deals it claimed."""
        assignee = meeting.assignee(self.settings.unassigned_label)
        self._metrics_for(assignee).meeting_count += 1

        reasons: List[str] = []
        accepted = 0

        if meeting.deal_ids:
            for deal_id in self._direct_candidates(meeting, reasons):
                accepted += self._consider(deal_id, assignee, reasons)

        if meeting.company_ids:
            for deal_id in self._company_candidates(meeting.company_ids, reasons):
                accepted += self._consider(deal_id, assignee, reasons)

        if (
            self.settings.contact_fallback
            and not meeting.deal_ids
            and not meeting.company_ids
            and meeting.contact_ids
        ):
            company_ids = self.graph.company_ids_for_contacts(meeting.contact_ids)
            for deal_id in self._company_candidates(company_ids, reasons):
                accepted += self._consider(deal_id, assignee, reasons)

        if not accepted:
            self.meetings_without_deals.append(MeetingOutcome(
                meeting_id=meeting.id,
                assignee=assignee,
                reasons=unique(reasons) or [NO_LINKS],
            ))
        logger.debug("Meeting %s (%s): %d deals claimed", meeting.id, assignee, accepted)
        return accepted

    def run(self, meetings: Sequence[Meeting]) -> AttributionResult:
        for meeting in meetings:
            self.process_meeting(meeting)

        logger.info(
            "Attribution complete: %d meetings, %d employees, %d deals claimed, "
            "%d meetings without deals",
            len(meetings), len(self.employees), len(self.registry),
            len(self.meetings_without_deals),
        )
        return AttributionResult(
            employees=self.employees,
            registry=self.registry,
            meetings_without_deals=self.meetings_without_deals,
            credited_to=self.credited_to,
        )


def attribute_deals(
    meetings: Sequence[Meeting],
    graph: LinkGraph,
    window: Window,
    settings: Settings,
    now: Optional[datetime] = None,
) -> AttributionResult:
    """Run a fresh engine (and registry) over the meetings."""
    return AttributionEngine(graph, window, settings, now=now).run(meetings)
