"""Tests for the removed-deals audit."""

import pytest

from conftest import NOW, company_row, contact_row, deal_row, meeting_row
from scripts.lib.errors import InvalidQueryError
from scripts.lib.supabase_client import COMPANIES, CONTACTS, DEALS, MEETINGS
from scripts.p3.removed_deals import compile_employee_query
from scripts.p3.service import compute_removed_deals


@pytest.fixture
def seeded(store):
    store.add(
        MEETINGS,
        meeting_row("m1", assignee="Rob Smith", companies=["c1"], contacts=["p1"],
                    create_date="2025-03-01T00:00:00Z"),
        meeting_row("m2", assignee="Alice", deals=["d5"], create_date="2025-03-02T00:00:00Z"),
    )
    store.add(COMPANIES, company_row("c1", related=["c2"]), company_row("c2", related=["c3"]))
    store.add(CONTACTS, contact_row("p1"))
    store.add(
        DEALS,
        deal_row("d1", companies=["c1"]),
        deal_row("d2", companies=["c2"], name="Related company deal"),
        deal_row("d3", contacts=["p1"], name="Contact deal"),
        deal_row("d4", companies=["c2"], deal_type="Consulting"),
        deal_row("d5", companies=["c2"]),
        deal_row("d6", companies=["c3"]),
    )
    return store


class TestRemovedDeals:
    def test_lists_legacy_candidates_not_claimed(self, seeded, settings):
        report = compute_removed_deals(seeded, "rob", "all_time", now=NOW, settings=settings)

        assert report.employee_query == "rob"
        assert len(report.results) == 1
        rob = report.results[0]
        assert rob.employee == "Rob Smith"
        assert rob.count == 2
        assert [d.id for d in rob.deals] == ["d2", "d3"]
        assert rob.deals[0].type == "Monthly Service"

    def test_deal_claimed_by_another_employee_not_removed(self, seeded, settings):
        report = compute_removed_deals(seeded, "rob", "all_time", now=NOW, settings=settings)
        assert "d5" not in [d.id for d in report.results[0].deals]

    def test_related_companies_limited_to_one_hop(self, seeded, settings):
        report = compute_removed_deals(seeded, "rob", "all_time", now=NOW, settings=settings)
        assert "d6" not in [d.id for d in report.results[0].deals]

    def test_query_matches_several_employees(self, seeded, settings):
        report = compute_removed_deals(seeded, "rob|alice", "all_time", now=NOW, settings=settings)
        assert [r.employee for r in report.results] == ["Alice", "Rob Smith"]
        assert report.results[0].count == 0

    def test_no_match_returns_empty_results(self, seeded, settings):
        report = compute_removed_deals(seeded, "nobody", "all_time", now=NOW, settings=settings)
        assert report.results == []

    def test_invalid_regex_rejected_before_any_read(self, seeded, settings):
        with pytest.raises(InvalidQueryError):
            compute_removed_deals(seeded, "(", "all_time", now=NOW, settings=settings)
        assert seeded.calls == []

    def test_compile_is_case_insensitive(self):
        assert compile_employee_query("ROB").search("Rob Smith")
