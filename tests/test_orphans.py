"""Tests for the deals-without-P3 diagnostic."""

from conftest import NOW, deal_row, meeting_row
from models.p3_models import Deal, Meeting
from scripts.lib.supabase_client import DEALS
from scripts.p3.attribution import attribute_deals
from scripts.p3.link_graph import resolve_link_graph
from scripts.p3.orphans import find_deals_without_p3, is_orphaned
from scripts.p3.periods import resolve_window


def _setup(store, settings, meeting_rows, period="all_time", month=None):
    meetings = [Meeting.model_validate(r) for r in meeting_rows]
    graph = resolve_link_graph(store, meetings, settings)
    window = resolve_window(period, month, now=NOW)
    result = attribute_deals(meetings, graph, window, settings, now=NOW)
    return result.employees, graph, window


class TestIsOrphaned:
    def test_touched_company_not_orphan(self):
        deal = Deal.model_validate(deal_row("d1", companies=["c1"]))
        assert is_orphaned(deal, {"c1"}, set()) is False

    def test_direct_deal_not_orphan(self):
        deal = Deal.model_validate(deal_row("d1", companies=["c9"]))
        assert is_orphaned(deal, {"c1"}, {"d1"}) is False

    def test_untouched_deal_is_orphan(self):
        deal = Deal.model_validate(deal_row("d1", company="c9"))
        assert is_orphaned(deal, {"c1"}, set()) is True


class TestFindDealsWithoutP3:
    def test_lists_owned_eligible_untouched_deals(self, store, settings):
        store.add(
            DEALS,
            deal_row("d1", companies=["c1"], owner="Rob Smith"),
            deal_row("d2", companies=["c2"], owner="Rob Smith", amount=100),
            deal_row("d3", companies=["c3"], owner="Rob Smith", deal_type="Consulting"),
            deal_row("d4", companies=["c4"], owner="Someone Else"),
        )
        employees, graph, window = _setup(store, settings, [meeting_row("m1", companies=["c1"])])

        result = find_deals_without_p3(store, employees, graph, window, settings, now=NOW)
        rob = employees["Rob Smith"]
        assert [d.id for d in result["Rob Smith"]] == ["d2"]
        assert rob.deals_without_p3_count == 1
        assert rob.deals_without_p3[0].amount == 1200
        assert rob.deals_without_p3[0].classification == "in_play"

    def test_not_folded_into_bucket_totals(self, store, settings):
        store.add(DEALS, deal_row("d2", companies=["c2"], stage="Closed Won"))
        employees, graph, window = _setup(store, settings, [meeting_row("m1", companies=["c1"])])

        find_deals_without_p3(store, employees, graph, window, settings, now=NOW)
        rob = employees["Rob Smith"]
        assert rob.deals_without_p3_count == 1
        assert rob.deals_won_count == 0

    def test_owned_deals_limited_to_window(self, store, settings):
        store.add(
            DEALS,
            deal_row("march", companies=["c2"], create_date="2025-03-10T00:00:00Z"),
            deal_row("april", companies=["c2"], create_date="2025-04-10T00:00:00Z"),
        )
        employees, graph, window = _setup(
            store, settings, [meeting_row("m1", companies=["c1"])],
            period="month_to_date", month="2025-03",
        )
        result = find_deals_without_p3(store, employees, graph, window, settings, now=NOW)
        assert [d.id for d in result["Rob Smith"]] == ["march"]

    def test_unassigned_skipped(self, store, settings):
        store.add(DEALS, deal_row("d1", companies=["c2"], owner="Unassigned"))
        employees, graph, window = _setup(store, settings, [meeting_row("m1", assignee=None)])
        assert find_deals_without_p3(store, employees, graph, window, settings, now=NOW) == {}

    def test_lookup_failure_skips_employee(self, store, settings):
        store.add(
            DEALS,
            deal_row("d1", companies=["c2"], owner="Alice"),
            deal_row("d2", companies=["c2"], owner="Bob"),
        )
        employees, graph, window = _setup(store, settings, [
            meeting_row("m1", assignee="Alice"),
            meeting_row("m2", assignee="Bob"),
        ])
        store.fail(
            DEALS, "fetch_by_filter",
            when=lambda filters: any(f.column == "deal_owner" and f.value == "Alice" for f in filters),
        )

        result = find_deals_without_p3(store, employees, graph, window, settings, now=NOW)
        assert "Alice" not in result
        assert employees["Alice"].deals_without_p3_count == 0
        assert [d.id for d in result["Bob"]] == ["d2"]
