"""
Supabase Client Helper for the P3 Proposal Dashboard.
Read-only gateway over the four whalesync-mirrored tables (Meetings,
Contacts, Companies, Deals): fetch by ID batch, fetch by filter and fetch by
array overlap. Every read is paginated and every failure surfaces as a
StoreReadError so callers choose between retrying and skipping.

Usage:
    from scripts.lib.supabase_client import RecordStore, Filter

    store = RecordStore()
    meetings = store.fetch_by_filter("Meetings", [Filter("call_and_meeting_type", "eq", "P3 - Proposal")])
    deals = store.fetch_by_overlap("Deals", "Companies_fk_Companies", company_ids[:100])
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence

from dotenv import load_dotenv

from scripts.lib.errors import StoreNotConfiguredError, StoreReadError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = (
    os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    or os.environ.get("SUPABASE_KEY", "")
)

MEETINGS = "Meetings"
CONTACTS = "Contacts"
COMPANIES = "Companies"
DEALS = "Deals"

# Primary key per table (whalesync mirrors use whalesync_postgres_id)
ID_COLUMNS = {
    MEETINGS: "id",
    CONTACTS: "whalesync_postgres_id",
    COMPANIES: "whalesync_postgres_id",
    DEALS: "whalesync_postgres_id",
}

# PostgREST rejects long IN / overlap lists (URL length)
MAX_BATCH_SIZE = 100
DEFAULT_PAGE_SIZE = 1000

# Filter op -> postgrest builder method
OPERATORS = {
    "eq": "eq",
    "in": "in_",
    "gte": "gte",
    "lt": "lt",
    "overlaps": "overlaps",
}

_client = None


def get_client():
    """Create and return a Supabase client (singleton)."""
    global _client
    if _client is not None:
        return _client

    if not SUPABASE_URL or not SUPABASE_KEY:
        raise StoreNotConfiguredError()

    from supabase import create_client
    _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    logger.info("Supabase client connected to %s", SUPABASE_URL)
    return _client


@dataclass(frozen=True)
class Filter:
    """One column predicate, e.g. Filter("create_date", "gte", "2025-01-01")."""
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


class RecordStore:
    """
    Read-only access to the dashboard tables.

    All methods return plain row dicts. Pagination is handled here so a
    caller never sees a truncated result because of the PostgREST row cap.
    """

    def __init__(self, client=None, page_size: int = DEFAULT_PAGE_SIZE):
        self._client = client
        self.page_size = page_size

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def _execute(self, table: str, operation: str, filters: Sequence[Filter],
                 select: str = "*") -> List[Dict]:
        id_column = ID_COLUMNS.get(table, "id")
        rows: List[Dict] = []
        offset = 0
        try:
            while True:
                query = self.client.table(table).select(select)
                for f in filters:
                    query = getattr(query, OPERATORS[f.op])(f.column, f.value)
                query = query.order(id_column).range(offset, offset + self.page_size - 1)
                page = query.execute().data or []
                rows.extend(page)
                if len(page) < self.page_size:
                    break
                offset += self.page_size
        except StoreNotConfiguredError:
            raise
        except Exception as e:
            logger.error("Supabase %s on %s failed: %s", operation, table, e)
            raise StoreReadError(table, operation, e) from e

        logger.debug("%s on %s returned %d rows", operation, table, len(rows))
        return rows

    def fetch_by_filter(self, table: str, filters: Sequence[Filter],
                        select: str = "*") -> List[Dict]:
        """Fetch every row of `table` matching all filters."""
        return self._execute(table, "fetch_by_filter", list(filters), select)

    def fetch_by_ids(self, table: str, ids: Sequence[str], select: str = "*") -> List[Dict]:
        """Fetch one batch (at most 100) of rows by primary key."""
        ids = list(ids)
        if not ids:
            return []
        _check_batch(ids)
        return self._execute(
            table, "fetch_by_ids", [Filter(ID_COLUMNS.get(table, "id"), "in", ids)], select,
        )

    def fetch_by_overlap(self, table: str, array_field: str, ids: Sequence[str],
                         select: str = "*") -> List[Dict]:
        """Fetch one batch of rows whose array column shares an element with `ids`."""
        ids = list(ids)
        if not ids:
            return []
        _check_batch(ids)
        return self._execute(table, "fetch_by_overlap", [Filter(array_field, "overlaps", ids)], select)


def _check_batch(ids: Sequence[str]) -> None:
    if len(ids) > MAX_BATCH_SIZE:
        raise ValueError(f"Batch of {len(ids)} IDs exceeds the limit of {MAX_BATCH_SIZE}")
