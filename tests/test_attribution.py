"""Tests for the deal attribution engine."""

from datetime import timedelta

import pytest

from conftest import NOW, contact_row, deal_row, meeting_row
from models.p3_models import BUCKETS, IN_PLAY, LOST, OVERDUE, UNCLASSIFIED, WON, Deal, Meeting
from scripts.lib.config import Settings
from scripts.lib.supabase_client import CONTACTS, DEALS
from scripts.p3.attribution import (
    ALREADY_CLAIMED,
    COMPANY_MISMATCH,
    DEAL_NOT_FOUND,
    INELIGIBLE_TYPE,
    NO_LINKS,
    ClaimedDealRegistry,
    attribute_deals,
    classify_deal,
)
from scripts.p3.link_graph import resolve_link_graph
from scripts.p3.periods import resolve_window


def _run(store, meeting_rows, settings, period="all_time", month=None):
    meetings = [Meeting.model_validate(r) for r in meeting_rows]
    graph = resolve_link_graph(store, meetings, settings)
    window = resolve_window(period, month, now=NOW)
    return attribute_deals(meetings, graph, window, settings, now=NOW)


def _iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


class TestClaimedDealRegistry:
    def test_first_claim_wins(self):
        registry = ClaimedDealRegistry()
        assert registry.try_claim("d1") is True
        assert registry.try_claim("d1") is False
        assert "d1" in registry
        assert len(registry) == 1

    def test_claim_order_preserved(self):
        registry = ClaimedDealRegistry()
        for deal_id in ("d3", "d1", "d2"):
            registry.try_claim(deal_id)
        assert registry.claimed_ids == ["d3", "d1", "d2"]

    def test_empty_id_never_claimed(self):
        assert ClaimedDealRegistry().try_claim("") is False


class TestClassifyDeal:
    @pytest.mark.parametrize("days, expected", [
        (0, IN_PLAY),
        (149, IN_PLAY),
        (150, OVERDUE),
        (400, OVERDUE),
    ])
    def test_age_boundary(self, settings, days, expected):
        deal = Deal.model_validate(deal_row("d1", create_date=_iso(NOW - timedelta(days=days))))
        assert classify_deal(deal, NOW, settings) == expected

    def test_partial_day_does_not_count(self, settings):
        created = NOW - timedelta(days=150) + timedelta(seconds=1)
        deal = Deal.model_validate(deal_row("d1", create_date=_iso(created)))
        assert classify_deal(deal, NOW, settings) == IN_PLAY

    def test_stage_wins_over_age(self, settings):
        old = _iso(NOW - timedelta(days=900))
        won = Deal.model_validate(deal_row("d1", stage="Closed Won", create_date=old))
        lost = Deal.model_validate(deal_row("d2", stage="Closed Lost", create_date=None))
        assert classify_deal(won, NOW, settings) == WON
        assert classify_deal(lost, NOW, settings) == LOST

    def test_open_deal_without_date_unclassified(self, settings):
        deal = Deal.model_validate(deal_row("d1", create_date=None))
        assert classify_deal(deal, NOW, settings) == UNCLASSIFIED


class TestAttributionEngine:
    def test_monthly_amount_annualized(self, store, settings):
        store.add(DEALS, deal_row("d1", stage="Closed Won", amount=500))
        result = _run(store, [meeting_row("m1", deals=["d1"])], settings)

        rob = result.employees["Rob Smith"]
        assert rob.deals_won_count == 1
        assert rob.deals_won_amount == 6000
        assert rob.deal_ids[WON] == ["d1"]

    def test_month_to_date_amount_not_annualized(self, store, settings):
        store.add(DEALS, deal_row("d1", stage="Closed Won", amount=500))
        result = _run(
            store, [meeting_row("m1", deals=["d1"])], settings,
            period="month_to_date", month="2025-03",
        )
        assert result.employees["Rob Smith"].deals_won_amount == 500

    def test_ineligible_type_skipped(self, store, settings):
        store.add(DEALS, deal_row("d1", deal_type="Consulting"))
        result = _run(store, [meeting_row("m1", deals=["d1"])], settings)

        rob = result.employees["Rob Smith"]
        assert rob.total_deal_count == 0
        assert "d1" not in result.registry
        assert result.meetings_without_deals[0].reasons == [INELIGIBLE_TYPE]

    def test_deal_type_matched_case_insensitively(self, store, settings):
        store.add(DEALS, deal_row("d1", deal_type="  recurring SPECIAL service "))
        result = _run(store, [meeting_row("m1", deals=["d1"])], settings)
        assert result.employees["Rob Smith"].deals_in_play_under_150_count == 1

    def test_shared_company_credited_to_first_meeting(self, store, settings):
        store.add(DEALS, deal_row("d1", companies=["c1"], stage="Closed Won"))
        result = _run(store, [
            meeting_row("m1", assignee="Alice", companies=["c1"]),
            meeting_row("m2", assignee="Bob", companies=["c1"]),
        ], settings)

        assert result.employees["Alice"].deals_won_count == 1
        assert result.employees["Bob"].deals_won_count == 0
        assert result.employees["Bob"].meeting_count == 1
        assert result.credited_to == {"d1": "Alice"}
        assert result.meetings_without_deals[0].reasons == [ALREADY_CLAIMED]

    def test_direct_deals_narrowed_to_meeting_companies(self, store, settings):
        store.add(
            DEALS,
            deal_row("d1", companies=["c1"]),
            deal_row("d2", companies=["c9"]),
        )
        result = _run(store, [meeting_row("m1", deals=["d1", "d2"], companies=["c1"])], settings)

        assert result.employees["Rob Smith"].deal_ids[IN_PLAY] == ["d1"]
        assert "d2" not in result.registry

    def test_scalar_company_counts_for_narrowing(self, store, settings):
        store.add(
            DEALS,
            deal_row("d1", company="c1"),
            deal_row("d2", companies=["c9"]),
        )
        result = _run(store, [meeting_row("m1", deals=["d1", "d2"], companies=["c1"])], settings)
        assert result.registry.claimed_ids == ["d1"]

    def test_single_direct_deal_trusted(self, store, settings):
        store.add(DEALS, deal_row("d1", companies=["c9"]))
        result = _run(store, [meeting_row("m1", deals=["d1"], companies=["c1"])], settings)
        assert result.registry.claimed_ids == ["d1"]

    def test_direct_deals_kept_without_meeting_companies(self, store, settings):
        store.add(DEALS, deal_row("d1", companies=["c1"]), deal_row("d2", companies=["c2"]))
        result = _run(store, [meeting_row("m1", deals=["d1", "d2"])], settings)
        assert result.registry.claimed_ids == ["d1", "d2"]

    def test_company_deals_added_after_direct(self, store, settings):
        store.add(
            DEALS,
            deal_row("d1", companies=["c1"]),
            deal_row("d2", companies=["c1"], stage="Closed Lost"),
        )
        result = _run(store, [meeting_row("m1", deals=["d2"], companies=["c1"])], settings)

        rob = result.employees["Rob Smith"]
        assert result.registry.claimed_ids == ["d2", "d1"]
        assert rob.deals_lost_count == 1
        assert rob.deals_in_play_under_150_count == 1

    def test_company_mismatch_reported(self, store, settings):
        store.add(DEALS, deal_row("d1", companies=["c8"]), deal_row("d2", companies=["c9"]))
        result = _run(store, [meeting_row("m1", deals=["d1", "d2"], companies=["c1"])], settings)
        assert COMPANY_MISMATCH in result.meetings_without_deals[0].reasons

    def test_missing_deal_record_not_claimed(self, store, settings):
        result = _run(store, [meeting_row("m1", deals=["gone"])], settings)
        assert len(result.registry) == 0
        assert result.meetings_without_deals[0].reasons == [DEAL_NOT_FOUND]

    def test_open_deal_without_date_claimed_without_bucket(self, store, settings):
        store.add(DEALS, deal_row("d1", create_date=None, companies=["c1"]))
        result = _run(store, [
            meeting_row("m1", assignee="Alice", deals=["d1"]),
            meeting_row("m2", assignee="Bob", companies=["c1"]),
        ], settings)

        assert "d1" in result.registry
        assert result.employees["Alice"].total_deal_count == 0
        assert result.employees["Bob"].total_deal_count == 0
        assert result.meetings_without_deals[-1].meeting_id == "m2"

    def test_unassigned_meetings_grouped(self, store, settings):
        result = _run(store, [meeting_row("m1", assignee=None), meeting_row("m2", assignee="")], settings)
        assert result.employees["Unassigned"].meeting_count == 2

    def test_name_variants_stay_separate(self, store, settings):
        result = _run(store, [
            meeting_row("m1", assignee="Rob Smith"),
            meeting_row("m2", assignee="Rob Smith (old)"),
        ], settings)
        assert set(result.employees) == {"Rob Smith", "Rob Smith (old)"}
        assert result.employees["Rob Smith (old)"].display_name == "Rob Smith"

    def test_meeting_without_links(self, store, settings):
        result = _run(store, [meeting_row("m1")], settings)
        assert result.meetings_without_deals[0].reasons == [NO_LINKS]


class TestContactFallback:
    def _seed(self, store):
        store.add(CONTACTS, contact_row("p1", companies=["c1"]))
        store.add(DEALS, deal_row("d1", companies=["c1"]))

    def test_disabled_by_default(self, store, settings):
        self._seed(store)
        result = _run(store, [meeting_row("m1", contacts=["p1"])], settings)
        assert len(result.registry) == 0

    def test_enabled_credits_contact_company_deals(self, store):
        self._seed(store)
        result = _run(
            store, [meeting_row("m1", contacts=["p1"])], Settings(contact_fallback=True),
        )
        assert result.registry.claimed_ids == ["d1"]

    def test_not_used_when_meeting_has_company_links(self, store):
        self._seed(store)
        result = _run(
            store, [meeting_row("m1", contacts=["p1"], companies=["c7"])],
            Settings(contact_fallback=True),
        )
        assert len(result.registry) == 0


class TestRunProperties:
    @pytest.fixture
    def result(self, store, settings):
        old = _iso(NOW - timedelta(days=200))
        store.add(
            DEALS,
            deal_row("d1", companies=["c1"], stage="Closed Won"),
            deal_row("d2", companies=["c1", "c2"], stage="Closed Lost"),
            deal_row("d3", companies=["c2"]),
            deal_row("d4", companies=["c3"], create_date=old),
            deal_row("d5", companies=["c3"], deal_type="Consulting"),
        )
        return _run(store, [
            meeting_row("m1", assignee="Alice", companies=["c1"]),
            meeting_row("m2", assignee="Bob", companies=["c2", "c3"]),
            meeting_row("m3", assignee="Alice", deals=["d3"]),
            meeting_row("m4", assignee=None),
        ], settings)

    def test_every_meeting_counted_once(self, result):
        assert result.meeting_total == 4

    def test_each_claimed_deal_in_exactly_one_bucket(self, result):
        seen = [
            deal_id
            for metrics in result.employees.values()
            for bucket in BUCKETS
            for deal_id in metrics.deal_ids[bucket]
        ]
        assert sorted(seen) == ["d1", "d2", "d3", "d4"]
        assert len(seen) == len(set(seen))

    def test_claims_follow_meeting_order(self, result):
        assert result.credited_to == {"d1": "Alice", "d2": "Alice", "d3": "Bob", "d4": "Bob"}
        assert result.employees["Bob"].deal_ids[OVERDUE] == ["d4"]


class TestTrimmedTimestamps:
    @pytest.mark.parametrize("create_date", [
        "2025-05-01T12:34:56.12+00:00",
        "2025-05-01T12:34:56.12345+00:00",
        "2025-05-01T12:34:56.1Z",
    ])
    def test_short_fractions_classified_by_age(self, settings, create_date):
        deal = Deal.model_validate(deal_row("d1", create_date=create_date))
        assert deal.created_at is not None
        assert classify_deal(deal, NOW, settings) == IN_PLAY


class TestDirectLinkClaims:
    def test_deal_linked_by_two_meetings_credited_to_first(self, store, settings):
        store.add(DEALS, deal_row("d1", stage="Closed Won"))
        result = _run(store, [
            meeting_row("m1", assignee="Alice", deals=["d1"]),
            meeting_row("m2", assignee="Bob", deals=["d1"]),
        ], settings)

        assert result.employees["Alice"].deal_ids[WON] == ["d1"]
        assert result.employees["Bob"].total_deal_count == 0
        assert result.employees["Bob"].meeting_count == 1
        assert result.credited_to == {"d1": "Alice"}
        assert [(m.meeting_id, m.reasons) for m in result.meetings_without_deals] == [
            ("m2", [ALREADY_CLAIMED]),
        ]

    def test_missing_record_reported_when_narrowing(self, store, settings):
        store.add(DEALS, deal_row("d1", companies=["c9"]))
        result = _run(
            store, [meeting_row("m1", deals=["d1", "gone"], companies=["c1"])], settings,
        )
        reasons = result.meetings_without_deals[0].reasons
        assert DEAL_NOT_FOUND in reasons
        assert reasons.count(COMPANY_MISMATCH) == 1
