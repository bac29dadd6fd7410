"""
Adversarial tests for race condition attack prevention.

Verifies that concurrent operations on the same pair or record are
serialized, so an attacker firing requests in parallel cannot:
- Create duplicate connections between two users
- Both accept and withdraw the same request
- Stack two pending elevations for one level
- Reorder or lose test results in the health projection

Defense: every check-then-write on a pair runs in one transaction locked
on the pair; every health record update runs in one transaction locked
on that record.
"""

from datetime import datetime, timedelta, timezone
from functools import partial

import pytest

from confidant.domain.exceptions import Conflict, FailedPrecondition
from confidant.domain.models import (
    CONNECTIONS,
    TEST_RESULTS,
    Connection,
    ConnectionLevel,
    ConnectionStatus,
    HealthCode,
    TestResult,
)
from confidant.domain.ports import Filter

pytestmark = pytest.mark.adversarial

D0 = datetime(2025, 2, 1, tzinfo=timezone.utc)


class TestConnectionRaces:
    """Concurrent writes on one pair of users."""

    def test_concurrent_requests_exactly_one_succeeds(self, lifecycle, store, race) -> None:
        """Both users spam requests at each other; one connection results."""
        calls = [partial(lifecycle.request, "alice", "bob"), partial(lifecycle.request, "bob", "alice")] * 4

        outcomes = race(calls)

        created = [o for o in outcomes if isinstance(o, Connection)]
        assert len(created) == 1, f"Race condition: {len(created)} connections created"
        assert all(isinstance(o, Conflict) for o in outcomes if o is not created[0])
        live = store.query(CONNECTIONS, Filter("status", "in", [0, 1]))
        assert len(live) == 1

    def test_accept_and_cancel_race(self, lifecycle, store, race) -> None:
        """The request ends either accepted or cancelled, never both."""
        pending = lifecycle.request("alice", "bob")

        accept, cancel = race(
            [
                partial(lifecycle.respond, "bob", pending.id, ConnectionStatus.ACTIVE),
                partial(lifecycle.respond, "alice", pending.id, ConnectionStatus.CANCELLED),
            ]
        )

        assert [isinstance(o, FailedPrecondition) for o in (accept, cancel)].count(True) == 1
        final = store.get(CONNECTIONS, pending.id).data["status"]
        assert final in (ConnectionStatus.ACTIVE, ConnectionStatus.CANCELLED)

    def test_concurrent_elevations_create_one_pending_record(self, lifecycle, connect, store, race) -> None:
        """Both participants elevate the same record at once."""
        active = connect("alice", "bob")

        outcomes = race(
            [
                partial(lifecycle.change_level, "alice", active.id, ConnectionLevel.NEW, ConnectionLevel.FRIEND),
                partial(lifecycle.change_level, "bob", active.id, ConnectionLevel.NEW, ConnectionLevel.FRIEND),
            ]
        )

        assert sum(isinstance(o, Connection) for o in outcomes) == 1
        assert sum(isinstance(o, FailedPrecondition) for o in outcomes) == 1
        pending = store.query(CONNECTIONS, Filter("status", "==", 0), Filter("level", "==", 3))
        assert len(pending) == 1

    def test_double_accept_keeps_one_active_record(self, lifecycle, store, race) -> None:
        pending = lifecycle.request("alice", "bob")

        outcomes = race([partial(lifecycle.respond, "bob", pending.id, ConnectionStatus.ACTIVE)] * 2)

        assert sum(isinstance(o, Connection) for o in outcomes) == 1
        assert len(store.query(CONNECTIONS, Filter("status", "==", 1))) == 1


class TestHealthRaces:
    """Concurrent submissions for one user."""

    def test_concurrent_submissions_keep_every_ledger_entry(self, submission, health, store, deriver, race) -> None:
        dates = [D0 + timedelta(days=n) for n in range(8)]
        calls = [partial(submission.submit, "alice", [TestResult("HIV", False, d)]) for d in dates]

        race(calls)

        ledger = store.query(TEST_RESULTS, Filter("test_pseudonym", "==", deriver.test(deriver.standard("alice"))))
        assert len(ledger) == len(dates)

    def test_concurrent_submissions_keep_latest_negative(self, submission, health, deriver, race) -> None:
        """Whatever order the writes land in, the newest date wins."""
        dates = [D0 + timedelta(days=n) for n in range(8)]
        calls = [partial(submission.submit, "alice", [TestResult("HIV", False, d)]) for d in reversed(dates)]

        race(calls)

        view = health.statuses(deriver.standard("alice"))
        assert [(v.infection_id, v.health_status, v.status_date) for v in view] == [
            ("HIV", HealthCode.NEGATIVE, dates[-1].date().isoformat())
        ]

    def test_positive_never_lost_to_racing_older_negative(self, submission, health, deriver, race) -> None:
        calls = [
            partial(submission.submit, "alice", [TestResult("SYPH", True, D0 + timedelta(days=1))]),
            partial(submission.submit, "alice", [TestResult("SYPH", False, D0)]),
        ]

        race(calls)

        assert health.current_code(deriver.standard("alice"), "SYPH") == HealthCode.POSITIVE
