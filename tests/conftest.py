"""Shared fixtures: an in-memory record store and fixed settings / clock."""

import os
from datetime import datetime, timezone
from typing import Dict, List

os.environ.setdefault("LOG_TO_FILE", "false")

import pytest  # noqa: E402

from scripts.lib.config import Settings  # noqa: E402
from scripts.lib.errors import StoreReadError  # noqa: E402
from scripts.lib.supabase_client import (  # noqa: E402
    COMPANIES,
    CONTACTS,
    DEALS,
    ID_COLUMNS,
    MAX_BATCH_SIZE,
    MEETINGS,
    Filter,
)
from scripts.lib.utils import parse_ts  # noqa: E402

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def _matches(row: Dict, f: Filter) -> bool:
    value = row.get(f.column)
    if f.op == "eq":
        return value == f.value
    if f.op == "in":
        return value in f.value
    if f.op == "overlaps":
        return bool(set(value or []) & set(f.value))
    left, right = parse_ts(value), parse_ts(f.value)
    if left is None or right is None:
        return False
    if f.op == "gte":
        return left >= right
    return left < right


class FakeRecordStore:
    """
    Same interface as RecordStore, backed by lists of row dicts.

    Failures are injected per (table, operation) with fail(); every call is
    recorded in `calls` as (table, operation, filters).
    """

    def __init__(self, tables: Dict[str, List[Dict]] = None):
        self.tables = {MEETINGS: [], CONTACTS: [], COMPANIES: [], DEALS: []}
        self.tables.update(tables or {})
        self.calls = []
        self._failures = {}

    def add(self, table: str, *rows: Dict) -> "FakeRecordStore":
        self.tables[table].extend(rows)
        return self

    def fail(self, table: str, operation: str, times: int = None,
             when=None) -> None:
        """Make the next `times` matching calls raise StoreReadError (None: always)."""
        self._failures[(table, operation)] = {"times": times, "when": when}

    def _maybe_fail(self, table: str, operation: str, filters) -> None:
        rule = self._failures.get((table, operation))
        if not rule:
            return
        if rule["when"] is not None and not rule["when"](filters):
            return
        if rule["times"] is not None:
            if rule["times"] <= 0:
                return
            rule["times"] -= 1
        raise StoreReadError(table, operation, RuntimeError("injected failure"))

    def _select(self, table: str, operation: str, filters: List[Filter]) -> List[Dict]:
        self.calls.append((table, operation, filters))
        self._maybe_fail(table, operation, filters)
        rows = [r for r in self.tables[table] if all(_matches(r, f) for f in filters)]
        id_column = ID_COLUMNS.get(table, "id")
        return sorted((dict(r) for r in rows), key=lambda r: str(r.get(id_column)))

    def fetch_by_filter(self, table, filters, select="*"):
        return self._select(table, "fetch_by_filter", list(filters))

    def fetch_by_ids(self, table, ids, select="*"):
        ids = list(ids)
        if not ids:
            return []
        assert len(ids) <= MAX_BATCH_SIZE
        return self._select(table, "fetch_by_ids", [Filter(ID_COLUMNS[table], "in", ids)])

    def fetch_by_overlap(self, table, array_field, ids, select="*"):
        ids = list(ids)
        if not ids:
            return []
        assert len(ids) <= MAX_BATCH_SIZE
        return self._select(table, "fetch_by_overlap", [Filter(array_field, "overlaps", ids)])

    def count_calls(self, table: str, operation: str) -> int:
        return sum(1 for t, op, _ in self.calls if t == table and op == operation)


# ─── Row builders ──────────────────────────────────────────

def meeting_row(mid, assignee="Rob Smith", deals=None, companies=None, contacts=None,
                create_date="2025-03-01T10:00:00Z", meeting_type="P3 - Proposal"):
    return {
        "id": mid,
        "call_and_meeting_type": meeting_type,
        "activity_assigned_to": assignee,
        "Deals_fk_Deals": deals,
        "Companies_fk_Companies": companies,
        "Contacts_fk_Contacts": contacts,
        "create_date": create_date,
    }


def deal_row(did, companies=None, company=None, contacts=None, deal_type="Monthly Service",
             stage="Proposal Sent", amount=500, create_date="2025-05-01T00:00:00Z",
             name=None, owner="Rob Smith"):
    return {
        "whalesync_postgres_id": did,
        "Companies_fk_Companies": companies,
        "companies": company,
        "Contacts_fk_Contacts": contacts,
        "deal_type": deal_type,
        "deal_stage": stage,
        "amount": amount,
        "create_date": create_date,
        "deal_name": name or f"Deal {did}",
        "deal_owner": owner,
    }


def company_row(cid, name=None, related=None):
    return {
        "whalesync_postgres_id": cid,
        "company_name": name or f"Company {cid}",
        "Companies_fk_Companies": related,
    }


def contact_row(pid, companies=None, company=None):
    return {
        "whalesync_postgres_id": pid,
        "Companies_fk_Companies": companies,
        "companies": company,
    }


# ─── Fixtures ──────────────────────────────────────────────

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    return Settings(retry_base_delay=0.0)


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def sleeps():
    """Collects backoff delays instead of sleeping."""
    return []
