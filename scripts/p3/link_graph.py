"""
Link Graph Resolver
====================
Hydrates everything the attribution engine needs so that attribution runs
as pure in-memory lookups.

Link paths gathered from the meetings:
  1. meeting -> deals            (Deals_fk_Deals)
  2. meeting -> companies        (Companies_fk_Companies)
  3. meeting -> contacts -> companies (contact fallback)

Deals are pulled for every known company twice, once by array overlap on
Deals.Companies_fk_Companies and once by the scalar Deals.companies column,
plus a direct fetch of the meeting-referenced deal IDs.

Batch failures are logged and skipped. A partially hydrated graph only means
fewer matches downstream; it never aborts the run.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Sequence, Set, Type

from pydantic import BaseModel, ValidationError

from models.p3_models import Company, Contact, Deal, Meeting
from scripts.lib.config import Settings
from scripts.lib.errors import StoreReadError
from scripts.lib.logger import setup_logger
from scripts.lib.supabase_client import COMPANIES, CONTACTS, DEALS, Filter
from scripts.lib.utils import chunked, unique

logger = setup_logger("link_graph")

CONTACT_COLUMNS = "whalesync_postgres_id, companies, Companies_fk_Companies"
COMPANY_COLUMNS = "whalesync_postgres_id, company_name, Companies_fk_Companies"
DEAL_COLUMNS = (
    "whalesync_postgres_id, companies, Companies_fk_Companies, Contacts_fk_Contacts, "
    "deal_type, deal_stage, amount, create_date, deal_name, deal_owner"
)


@dataclass
class LinkGraph:
    """Lookup maps for one aggregation run. Discarded when the run ends."""
    direct_company_ids: List[str] = field(default_factory=list)
    direct_deal_ids: List[str] = field(default_factory=list)
    contact_ids: List[str] = field(default_factory=list)
    fallback_company_ids: List[str] = field(default_factory=list)
    contacts: Dict[str, Contact] = field(default_factory=dict)
    companies: Dict[str, Company] = field(default_factory=dict)
    deals: Dict[str, Deal] = field(default_factory=dict)
    deals_by_company_id: Dict[str, List[str]] = field(default_factory=dict)
    failed_batches: int = 0

    @property
    def touched_company_ids(self) -> Set[str]:
        """Companies reached by any P3 meeting, directly or through a linked deal or contact."""
        touched = set(self.direct_company_ids) | set(self.fallback_company_ids)
        for deal_id in self.direct_deal_ids:
            deal = self.deals.get(deal_id)
            if deal:
                touched |= deal.associated_company_ids
        return touched

    @property
    def adjacency(self) -> Dict[str, List[str]]:
        """Related-company edges (may contain cycles)."""
        return {cid: list(c.related_company_ids) for cid, c in self.companies.items()}

    def deals_for_company(self, company_id: str) -> List[str]:
        return self.deals_by_company_id.get(company_id, [])

    def company_ids_for_contacts(self, contact_ids: Iterable[str]) -> List[str]:
        ids: List[str] = []
        for contact_id in contact_ids:
            contact = self.contacts.get(contact_id)
            if contact:
                ids.extend(sorted(contact.associated_company_ids))
        return unique(ids)

    def related_companies(self, company_id: str, max_hops: int = 1) -> Set[str]:
        """
        Companies reachable from company_id through related-company edges,
        at most max_hops away. The start company is not included.
        """
        adjacency = self.adjacency
        visited = {company_id}
        found: Set[str] = set()
        queue = deque([(company_id, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= max_hops:
                continue
            for neighbour in adjacency.get(current, []):
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                found.add(neighbour)
                queue.append((neighbour, depth + 1))
        return found


def index_deals_by_company(deals: Dict[str, Deal]) -> Dict[str, List[str]]:
    """company id -> sorted deal ids, from each deal's array company association."""
    index: Dict[str, Set[str]] = {}
    for deal in deals.values():
        for company_id in deal.company_ids:
            index.setdefault(company_id, set()).add(deal.id)
    return {cid: sorted(ids) for cid, ids in index.items()}


class LinkGraphResolver:
    """Batch-fetches contacts, companies and deals reachable from meetings."""

    def __init__(self, store, settings: Settings):
        self.store = store
        self.settings = settings
        self.failed_batches = 0

    # ─── Batch helpers ──────────────────────────────────────

    def _fetch_batched(
        self,
        label: str,
        ids: Sequence[str],
        fetch: Callable[[List[str]], List[Dict]],
    ) -> List[Dict]:
        rows: List[Dict] = []
        for number, batch in enumerate(chunked(ids, self.settings.batch_size), start=1):
            try:
                rows.extend(fetch(batch))
            except StoreReadError as e:
                self.failed_batches += 1
                logger.warning(
                    "Skipping %s batch %d (%d IDs): %s", label, number, len(batch), e,
                )
        return rows

    @staticmethod
    def _parse(model: Type[BaseModel], rows: Iterable[Dict], label: str) -> List:
        records = []
        for row in rows:
            try:
                records.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping malformed %s row: %s", label, e)
        return records

    def fetch_contacts(self, contact_ids: Sequence[str]) -> Dict[str, Contact]:
        rows = self._fetch_batched(
            "contact", contact_ids,
            lambda batch: self.store.fetch_by_ids(CONTACTS, batch, CONTACT_COLUMNS),
        )
        return {c.id: c for c in self._parse(Contact, rows, "contact")}

    def fetch_companies(self, company_ids: Sequence[str]) -> Dict[str, Company]:
        rows = self._fetch_batched(
            "company", company_ids,
            lambda batch: self.store.fetch_by_ids(COMPANIES, batch, COMPANY_COLUMNS),
        )
        return {c.id: c for c in self._parse(Company, rows, "company")}

    def fetch_deals_by_ids(self, deal_ids: Sequence[str]) -> List[Deal]:
        rows = self._fetch_batched(
            "deal", deal_ids,
            lambda batch: self.store.fetch_by_ids(DEALS, batch, DEAL_COLUMNS),
        )
        return self._parse(Deal, rows, "deal")

    def fetch_deals_for_companies(self, company_ids: Sequence[str]) -> List[Deal]:
        """Deals associated with the companies through the array or the scalar column."""
        overlap_rows = self._fetch_batched(
            "deal-overlap", company_ids,
            lambda batch: self.store.fetch_by_overlap(
                DEALS, "Companies_fk_Companies", batch, DEAL_COLUMNS,
            ),
        )
        scalar_rows = self._fetch_batched(
            "deal-scalar", company_ids,
            lambda batch: self.store.fetch_by_filter(
                DEALS, [Filter("companies", "in", batch)], DEAL_COLUMNS,
            ),
        )
        return self._parse(Deal, overlap_rows + scalar_rows, "deal")

    def fetch_deals_for_contacts(self, contact_ids: Sequence[str]) -> List[Deal]:
        """Deals whose Contacts_fk_Contacts overlaps the contacts."""
        rows = self._fetch_batched(
            "deal-contact", contact_ids,
            lambda batch: self.store.fetch_by_overlap(
                DEALS, "Contacts_fk_Contacts", batch, DEAL_COLUMNS,
            ),
        )
        return self._parse(Deal, rows, "deal")

    # ─── Resolution ─────────────────────────────────────────

    def resolve(self, meetings: Sequence[Meeting]) -> LinkGraph:
        direct_company_ids = unique(cid for m in meetings for cid in m.company_ids)
        direct_deal_ids = unique(did for m in meetings for did in m.deal_ids)
        contact_ids = unique(pid for m in meetings for pid in m.contact_ids)

        logger.info(
            "Resolving link graph: %d companies, %d deals, %d contacts referenced",
            len(direct_company_ids), len(direct_deal_ids), len(contact_ids),
        )

        contacts = self.fetch_contacts(contact_ids)
        fallback_company_ids = unique(
            cid for pid in contact_ids if pid in contacts
            for cid in sorted(contacts[pid].associated_company_ids)
        )

        all_company_ids = unique(direct_company_ids + fallback_company_ids)
        companies = self.fetch_companies(all_company_ids)

        deals: Dict[str, Deal] = {}
        for deal in self.fetch_deals_for_companies(all_company_ids):
            deals.setdefault(deal.id, deal)
        for deal in self.fetch_deals_by_ids(direct_deal_ids):
            deals.setdefault(deal.id, deal)

        graph = LinkGraph(
            direct_company_ids=direct_company_ids,
            direct_deal_ids=direct_deal_ids,
            contact_ids=contact_ids,
            fallback_company_ids=fallback_company_ids,
            contacts=contacts,
            companies=companies,
            deals=deals,
            deals_by_company_id=index_deals_by_company(deals),
            failed_batches=self.failed_batches,
        )
        logger.info(
            "Link graph ready: %d contacts, %d companies, %d deals (%d failed batches)",
            len(contacts), len(companies), len(deals), self.failed_batches,
        )
        return graph


def resolve_link_graph(store, meetings: Sequence[Meeting], settings: Settings) -> LinkGraph:
    """Convenience wrapper around LinkGraphResolver."""
    return LinkGraphResolver(store, settings).resolve(meetings)
