"""
Unit tests for the health status engine.

Tests verify:
- The transition table for every (current, incoming) combination
- The append-only test ledger
- Exposure propagation never downgrades a positive record
- Negative-date inheritance across top-tier partners
- Date masking and alert flags
"""

from datetime import datetime, timedelta, timezone

import pytest

from confidant.domain.exceptions import InvalidArgument, NotFound
from confidant.domain.health import HealthStatusEngine, mask_date, next_status
from confidant.domain.models import (
    HEALTH_STATUS,
    TEST_RESULTS,
    ConnectionLevel,
    HealthCode,
    HealthRecord,
    Infection,
    TestResult,
    health_doc_id,
)
from confidant.domain.ports import Filter

D0 = datetime(2025, 1, 10, tzinfo=timezone.utc)
CHLAM = Infection("CHLAM", "Chlamydia", window_period_max=14, treatment_period_min=7)


def record(code: HealthCode, date: datetime | None = D0) -> HealthRecord:
    return HealthRecord("hp", "CHLAM", code, date)


class TestNextStatus:
    """Tests for the pure transition function."""

    @pytest.mark.parametrize("positive", [True, False])
    def test_absent_record_adopts_incoming(self, positive: bool) -> None:
        expected = HealthCode.POSITIVE if positive else HealthCode.NEGATIVE
        assert next_status(None, positive, D0, CHLAM) == (expected, D0)

    def test_not_tested_adopts_incoming_even_if_older(self) -> None:
        older = D0 - timedelta(days=30)
        assert next_status(record(HealthCode.NOT_TESTED), True, older, CHLAM) == (HealthCode.POSITIVE, older)

    def test_negative_adopts_newer_result(self) -> None:
        later = D0 + timedelta(days=1)
        assert next_status(record(HealthCode.NEGATIVE), True, later, CHLAM) == (HealthCode.POSITIVE, later)

    def test_negative_adopts_same_day_result(self) -> None:
        assert next_status(record(HealthCode.NEGATIVE), False, D0, CHLAM) == (HealthCode.NEGATIVE, D0)

    def test_negative_ignores_older_result(self) -> None:
        assert next_status(record(HealthCode.NEGATIVE), True, D0 - timedelta(days=1), CHLAM) is None

    def test_exposed_positive_always_flips(self) -> None:
        """A positive result on an exposed record wins regardless of date."""
        earlier = D0 - timedelta(days=5)
        assert next_status(record(HealthCode.EXPOSED), True, earlier, CHLAM) == (HealthCode.POSITIVE, earlier)

    def test_exposed_negative_inside_window_is_ignored(self) -> None:
        assert next_status(record(HealthCode.EXPOSED), False, D0 + timedelta(days=13), CHLAM) is None

    def test_exposed_negative_at_window_end_clears(self) -> None:
        cleared = D0 + timedelta(days=14)
        assert next_status(record(HealthCode.EXPOSED), False, cleared, CHLAM) == (HealthCode.NEGATIVE, cleared)

    def test_positive_positive_is_unchanged(self) -> None:
        assert next_status(record(HealthCode.POSITIVE), True, D0 + timedelta(days=60), CHLAM) is None

    def test_positive_negative_inside_treatment_is_ignored(self) -> None:
        assert next_status(record(HealthCode.POSITIVE), False, D0 + timedelta(days=6), CHLAM) is None

    def test_positive_negative_after_treatment_clears(self) -> None:
        cleared = D0 + timedelta(days=7)
        assert next_status(record(HealthCode.POSITIVE), False, cleared, CHLAM) == (HealthCode.NEGATIVE, cleared)


class TestRecordResults:
    """Tests for record_results over the in-memory store."""

    def test_first_result_creates_record(self, health: HealthStatusEngine, deriver) -> None:
        suuid = deriver.standard("alice")
        outcomes = health.record_results(suuid, [TestResult("CHLAM", False, D0)])

        assert len(outcomes) == 1
        assert outcomes[0].health_status == HealthCode.NEGATIVE
        assert outcomes[0].changed is True
        assert health.current_code(suuid, "CHLAM") == HealthCode.NEGATIVE

    def test_record_keyed_by_health_pseudonym_and_infection(self, health, deriver, store) -> None:
        suuid = deriver.standard("alice")
        health.record_results(suuid, [TestResult("GONO", True, D0)])

        doc = store.get(HEALTH_STATUS, health_doc_id(deriver.health(suuid), "GONO"))
        assert doc is not None
        assert doc.data["health_pseudonym"] == deriver.health(suuid)
        assert doc.data["health_status"] == HealthCode.POSITIVE

    def test_every_result_is_appended_to_ledger(self, health, deriver, store) -> None:
        """Ledger grows even when the projection does not change."""
        suuid = deriver.standard("alice")
        health.record_results(suuid, [TestResult("CHLAM", True, D0)])
        health.record_results(suuid, [TestResult("CHLAM", True, D0 + timedelta(days=1))])
        outcomes = health.record_results(suuid, [TestResult("CHLAM", False, D0 + timedelta(days=2))])

        assert outcomes[0].changed is False
        ledger = store.query(TEST_RESULTS, Filter("test_pseudonym", "==", deriver.test(suuid)))
        assert len(ledger) == 3
        assert sorted(doc.data["positive"] for doc in ledger) == [False, True, True]

    def test_ledger_does_not_contain_standard_pseudonym(self, health, deriver, store) -> None:
        suuid = deriver.standard("alice")
        health.record_results(suuid, [TestResult("CHLAM", True, D0)])
        for doc in store.query(TEST_RESULTS):
            assert suuid not in doc.data.values()

    def test_empty_results_rejected(self, health, deriver) -> None:
        with pytest.raises(InvalidArgument):
            health.record_results(deriver.standard("alice"), [])

    def test_unknown_infection_rejected_before_any_write(self, health, deriver, store) -> None:
        """One unknown infection id aborts the whole submission."""
        suuid = deriver.standard("alice")
        with pytest.raises(InvalidArgument):
            health.record_results(suuid, [TestResult("CHLAM", True, D0), TestResult("NOPE", True, D0)])
        assert store.query(TEST_RESULTS) == []
        assert store.query(HEALTH_STATUS) == []

    def test_naive_dates_are_treated_as_utc(self, health, deriver) -> None:
        suuid = deriver.standard("alice")
        outcomes = health.record_results(suuid, [TestResult("CHLAM", False, datetime(2025, 1, 10))])
        assert outcomes[0].status_date == D0

    def test_exposed_window_scenario(self, health, deriver) -> None:
        """
        Exposed on D0; negative at D0+10 is inside the 14-day window and
        leaves the record exposed; negative at D0+22 clears it.
        """
        suuid = deriver.standard("alice")
        assert health.expose(deriver.health(suuid), "CHLAM", D0) is True

        early = health.record_results(suuid, [TestResult("CHLAM", False, D0 + timedelta(days=10))])
        assert early[0].changed is False
        assert health.current_code(suuid, "CHLAM") == HealthCode.EXPOSED

        late = health.record_results(suuid, [TestResult("CHLAM", False, D0 + timedelta(days=22))])
        assert late[0].changed is True
        assert late[0].status_date == D0 + timedelta(days=22)
        assert health.current_code(suuid, "CHLAM") == HealthCode.NEGATIVE


class TestExpose:
    """Tests for alert-driven exposure."""

    def test_expose_sets_exposed_and_alert(self, health, deriver, store) -> None:
        hp = deriver.health(deriver.standard("bob"))
        assert health.expose(hp, "CHLAM", D0) is True

        doc = store.get(HEALTH_STATUS, health_doc_id(hp, "CHLAM"))
        assert doc.data["health_status"] == HealthCode.EXPOSED
        assert doc.data["new_alert"] is True

    def test_expose_refused_when_positive(self, health, deriver) -> None:
        suuid = deriver.standard("bob")
        health.record_results(suuid, [TestResult("CHLAM", True, D0)])

        assert health.expose(deriver.health(suuid), "CHLAM", D0 + timedelta(days=3)) is False
        assert health.current_code(suuid, "CHLAM") == HealthCode.POSITIVE

    def test_expose_on_exposed_refreshes_date_only(self, health, deriver, store) -> None:
        suuid = deriver.standard("bob")
        hp = deriver.health(suuid)
        health.expose(hp, "CHLAM", D0)
        health.mark_alert_read(suuid, "CHLAM")

        health.expose(hp, "CHLAM", D0 + timedelta(days=4))

        doc = store.get(HEALTH_STATUS, health_doc_id(hp, "CHLAM"))
        assert doc.data["health_status"] == HealthCode.EXPOSED
        assert doc.data["new_alert"] is False
        assert doc.data["status_date"].startswith("2025-01-14")


class TestNegativeInheritance:
    """Tests for date inheritance across top-tier partners."""

    def test_top_tier_partner_inherits_newer_negative_date(self, health, deriver, connect) -> None:
        connect("alice", "bob", ConnectionLevel.BOND_ELEVATED)
        alice, bob = deriver.standard("alice"), deriver.standard("bob")
        health.record_results(bob, [TestResult("CHLAM", False, D0)])
        health.record_results(alice, [TestResult("CHLAM", False, D0)])

        later = D0 + timedelta(days=20)
        health.record_results(alice, [TestResult("CHLAM", False, later)])

        statuses = {v.infection_id: v for v in health.statuses(bob)}
        assert statuses["CHLAM"].health_status == HealthCode.NEGATIVE
        assert statuses["CHLAM"].status_date == later.date().isoformat()

    def test_inheritance_never_changes_code(self, health, deriver, connect) -> None:
        connect("alice", "bob", ConnectionLevel.BOND_ELEVATED)
        alice, bob = deriver.standard("alice"), deriver.standard("bob")
        health.record_results(bob, [TestResult("CHLAM", True, D0)])

        health.record_results(alice, [TestResult("CHLAM", False, D0 + timedelta(days=20))])

        assert health.current_code(bob, "CHLAM") == HealthCode.POSITIVE

    def test_lower_tier_partner_does_not_inherit(self, health, deriver, connect) -> None:
        connect("alice", "bob", ConnectionLevel.BOND)
        alice, bob = deriver.standard("alice"), deriver.standard("bob")
        health.record_results(bob, [TestResult("CHLAM", False, D0)])

        health.record_results(alice, [TestResult("CHLAM", False, D0 + timedelta(days=20))])

        assert health.statuses(bob)[0].status_date == D0.date().isoformat()


class TestStatusesAndAlerts:
    """Tests for reading statuses and clearing alerts."""

    def test_statuses_unmasked_show_iso_date(self, health, deriver) -> None:
        suuid = deriver.standard("alice")
        health.record_results(suuid, [TestResult("SYPH", False, D0)])

        views = health.statuses(suuid)
        assert [(v.infection_id, v.status_date) for v in views] == [("SYPH", "2025-01-10")]

    def test_statuses_masked_use_buckets(self, health, deriver, clock) -> None:
        suuid = deriver.standard("alice")
        health.record_results(suuid, [TestResult("SYPH", False, clock.now - timedelta(days=100))])

        assert health.statuses(suuid, mask_dates=True)[0].status_date == "Last 180 Days"

    def test_statuses_empty_for_untested_user(self, health, deriver) -> None:
        assert health.statuses(deriver.standard("nobody")) == []

    def test_mark_alert_read_clears_flag(self, health, deriver) -> None:
        suuid = deriver.standard("bob")
        health.expose(deriver.health(suuid), "CHLAM", D0)

        health.mark_alert_read(suuid, "CHLAM")
        health.mark_alert_read(suuid, "CHLAM")

        assert health.statuses(suuid)[0].new_alert is False

    def test_mark_alert_read_missing_record(self, health, deriver) -> None:
        with pytest.raises(NotFound):
            health.mark_alert_read(deriver.standard("bob"), "CHLAM")


class TestMaskDate:
    """Tests for the masked date buckets."""

    @pytest.mark.parametrize(
        ("age_days", "label"),
        [(0, "Last 90 Days"), (90, "Last 90 Days"), (91, "Last 180 Days"), (200, "Last Year"), (400, "Over 1 Year")],
    )
    def test_buckets(self, age_days: int, label: str) -> None:
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert mask_date(now - timedelta(days=age_days), now) == label
