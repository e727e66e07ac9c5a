"""
P3 Proposal Dashboard — Pydantic Models
=========================================

Record models for the whalesync-mirrored Supabase tables (column names are
mapped through aliases, unknown columns are ignored) and the response
models served by the API.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from scripts.lib.utils import parse_ts


# ─── Enums / constants ──────────────────────────────────────

class TimePeriod(str, Enum):
    """Dashboard time window selector."""
    ALL_TIME = "all_time"
    YEAR_TO_DATE = "year_to_date"
    MONTH_TO_DATE = "month_to_date"


WON = "won"
LOST = "lost"
IN_PLAY = "in_play"
OVERDUE = "overdue"
UNCLASSIFIED = "unclassified"

BUCKETS = (WON, LOST, IN_PLAY, OVERDUE)


# ─── Store records ──────────────────────────────────────────

class Record(BaseModel):
    """Base for rows read from the record store."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @field_validator(
        "contact_ids", "company_ids", "deal_ids", "related_company_ids",
        mode="before", check_fields=False,
    )
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item]


class Meeting(Record):
    """A row from Meetings."""
    id: str
    meeting_outcome: Optional[str] = None
    call_and_meeting_type: Optional[str] = None
    contact_ids: List[str] = Field(default_factory=list, alias="Contacts_fk_Contacts")
    company_ids: List[str] = Field(default_factory=list, alias="Companies_fk_Companies")
    deal_ids: List[str] = Field(default_factory=list, alias="Deals_fk_Deals")
    activity_assigned_to: Optional[str] = None
    create_date: Optional[str] = None

    @property
    def created_at(self) -> Optional[datetime]:
        return parse_ts(self.create_date)

    def assignee(self, unassigned_label: str = "Unassigned") -> str:
        """Raw assignee string; no trimming or merging of name variants."""
        return self.activity_assigned_to or unassigned_label


class Contact(Record):
    """A row from Contacts."""
    id: str = Field(alias="whalesync_postgres_id")
    company: Optional[str] = Field(None, alias="companies")
    company_ids: List[str] = Field(default_factory=list, alias="Companies_fk_Companies")

    @property
    def associated_company_ids(self) -> FrozenSet[str]:
        ids = set(self.company_ids)
        if self.company:
            ids.add(self.company)
        return frozenset(ids)


class Company(Record):
    """A row from Companies."""
    id: str = Field(alias="whalesync_postgres_id")
    company_name: Optional[str] = None
    related_company_ids: List[str] = Field(default_factory=list, alias="Companies_fk_Companies")


class Deal(Record):
    """
    A row from Deals.

    A deal can point at companies through the scalar `companies` column, the
    `Companies_fk_Companies` array, or both. `associated_company_ids` merges
    the two once at construction.
    """
    id: str = Field(alias="whalesync_postgres_id")
    company: Optional[str] = Field(None, alias="companies")
    company_ids: List[str] = Field(default_factory=list, alias="Companies_fk_Companies")
    contact_ids: List[str] = Field(default_factory=list, alias="Contacts_fk_Contacts")
    deal_type: Optional[str] = None
    deal_stage: Optional[str] = None
    amount: Optional[float] = None
    create_date: Optional[str] = None
    deal_name: Optional[str] = None
    deal_owner: Optional[str] = None

    _associated: FrozenSet[str] = PrivateAttr(default_factory=frozenset)

    def model_post_init(self, __context: Any) -> None:
        ids = set(self.company_ids)
        if self.company:
            ids.add(self.company)
        self._associated = frozenset(ids)

    @property
    def associated_company_ids(self) -> FrozenSet[str]:
        return self._associated

    @property
    def created_at(self) -> Optional[datetime]:
        return parse_ts(self.create_date)

    def is_eligible(self, eligible_types) -> bool:
        """Deal type is in the whitelist (trimmed, case-insensitive)."""
        return (self.deal_type or "").strip().lower() in eligible_types


# ─── Metrics ────────────────────────────────────────────────

class DealDetail(BaseModel):
    """Deal summary used for tooltips and diagnostic lists."""
    id: str
    name: Optional[str] = None
    stage: Optional[str] = None
    classification: str = UNCLASSIFIED
    highlight: bool = False
    amount: float = 0.0
    create_date: Optional[str] = None


class EmployeeMetrics(BaseModel):
    """Per-employee aggregate for one run, keyed by the raw assignee string."""
    employee_name: str
    display_name: str = ""
    meeting_count: int = 0

    deals_won_count: int = 0
    deals_won_amount: float = 0.0
    deals_lost_count: int = 0
    deals_lost_amount: float = 0.0
    deals_in_play_under_150_count: int = 0
    deals_in_play_under_150_amount: float = 0.0
    deals_overdue_150_plus_count: int = 0
    deals_overdue_150_plus_amount: float = 0.0

    deals_won_names: List[str] = Field(default_factory=list)
    deals_lost_names: List[str] = Field(default_factory=list)
    deals_in_play_under_150_names: List[str] = Field(default_factory=list)
    deals_overdue_150_plus_names: List[str] = Field(default_factory=list)
    deals_in_play_under_150_details: List[DealDetail] = Field(default_factory=list)
    deals_overdue_150_plus_details: List[DealDetail] = Field(default_factory=list)

    deal_ids: Dict[str, List[str]] = Field(
        default_factory=lambda: {bucket: [] for bucket in BUCKETS}
    )

    deals_without_p3_count: int = 0
    deals_without_p3: List[DealDetail] = Field(default_factory=list)

    @property
    def total_deal_count(self) -> int:
        return (
            self.deals_won_count + self.deals_lost_count
            + self.deals_in_play_under_150_count + self.deals_overdue_150_plus_count
        )


class MeetingOutcome(BaseModel):
    """Diagnostic entry for a meeting that produced no deal."""
    meeting_id: str
    assignee: str
    reasons: List[str] = Field(default_factory=list)


class TeamSummary(BaseModel):
    """Team-level totals and averages for the summary cards and table footer."""
    employee_count: int = 0
    total_meetings: int = 0
    totals: Dict[str, float] = Field(default_factory=dict)
    averages: Dict[str, float] = Field(default_factory=dict)
    win_rate_pct: float = 0.0
    loss_rate_pct: float = 0.0
    top_performer: Optional[str] = None
    top_performer_meetings: int = 0


class PeriodWindow(BaseModel):
    """Resolved time window; start/end are None for all_time."""
    period: TimePeriod
    month: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    annualized: bool = True
    label: str = ""


class DashboardMetrics(BaseModel):
    """Full response of one aggregation run."""
    window: PeriodWindow
    employees: List[EmployeeMetrics] = Field(default_factory=list)
    summary: TeamSummary = Field(default_factory=TeamSummary)
    meetings_without_deals: List[MeetingOutcome] = Field(default_factory=list)
    diagnostics: Dict[str, int] = Field(default_factory=dict)
    generated_at: Optional[str] = None


# ─── Removed-deals audit ────────────────────────────────────

class RemovedDeal(BaseModel):
    """A deal the legacy policy would have credited but the current run did not."""
    id: str
    name: Optional[str] = None
    companies: Optional[str] = None
    type: Optional[str] = None
    stage: Optional[str] = None
    create_date: Optional[str] = None
    amount: Optional[float] = None


class EmployeeRemovedDeals(BaseModel):
    employee: str
    count: int = 0
    deals: List[RemovedDeal] = Field(default_factory=list)


class RemovedDealsReport(BaseModel):
    employee_query: str
    time_period: TimePeriod
    selected_month: Optional[str] = None
    results: List[EmployeeRemovedDeals] = Field(default_factory=list)
