"""
Health status engine - per-infection status transitions and test ledger.

Transition table (current code x incoming result):

    NOT_TESTED / absent  any       -> adopt incoming code and date
    NEGATIVE / unknown   any       -> adopt iff incoming date >= current date
    EXPOSED              positive  -> POSITIVE, date = incoming date
    EXPOSED              negative  -> NEGATIVE iff incoming >= current + window_period_max
    POSITIVE             positive  -> unchanged (ledger only)
    POSITIVE             negative  -> NEGATIVE iff incoming >= current + treatment_period_min

Every result is appended to the testResults ledger whether or not it moved
the projection. Each (health pseudonym, infection) record is updated in its
own transaction so concurrent submissions cannot break monotonicity.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from .exceptions import InvalidArgument, NotFound
from .models import (
    HEALTH_STATUS,
    TEST_RESULTS,
    ConnectionLevel,
    HealthCode,
    HealthRecord,
    Infection,
    ResultOutcome,
    TestResult,
    as_utc,
    health_doc_id,
    to_iso,
    utc_now,
)
from .partners import active_partners
from .ports import DocumentStore, Filter
from .pseudonyms import PseudonymDeriver
from .reference import InfectionCatalog

logger = logging.getLogger(__name__)

# Masked date buckets: (max age in days, label)
_DATE_BUCKETS = ((90, "Last 90 Days"), (180, "Last 180 Days"), (365, "Last Year"))
_OLDEST_BUCKET = "Over 1 Year"


def next_status(
    record: HealthRecord | None,
    positive: bool,
    incoming_date: datetime,
    infection: Infection,
) -> tuple[HealthCode, datetime] | None:
    """
    Apply one incoming result to the current projection.

    Returns:
        (new code, new status date), or None when the record stays unchanged
    """
    incoming_code = HealthCode.POSITIVE if positive else HealthCode.NEGATIVE
    if record is None or record.health_status == HealthCode.NOT_TESTED:
        return incoming_code, incoming_date

    current_date = record.status_date
    if record.health_status == HealthCode.EXPOSED:
        if positive:
            return HealthCode.POSITIVE, incoming_date
        if current_date is None or incoming_date >= current_date + timedelta(days=infection.window_period_max):
            return HealthCode.NEGATIVE, incoming_date
        return None

    if record.health_status == HealthCode.POSITIVE:
        if positive:
            return None
        if current_date is None or incoming_date >= current_date + timedelta(days=infection.treatment_period_min):
            return HealthCode.NEGATIVE, incoming_date
        return None

    # NEGATIVE, and the default for anything unrecognized: latest wins
    if current_date is None or incoming_date >= current_date:
        return incoming_code, incoming_date
    return None


def mask_date(value: datetime, now: datetime) -> str:
    """Coarse age bucket shown instead of an exact date."""
    age_days = (now - value).days
    for limit, label in _DATE_BUCKETS:
        if age_days <= limit:
            return label
    return _OLDEST_BUCKET


@dataclass(frozen=True)
class StatusView:
    """Health status of one infection as returned to a caller."""

    infection_id: str
    health_status: HealthCode
    status_date: str | None
    new_alert: bool


@dataclass
class HealthStatusEngine:
    """
    Domain service owning the healthStatus collection and testResults ledger.
    """

    store: DocumentStore
    deriver: PseudonymDeriver
    catalog: InfectionCatalog
    clock: Callable[[], datetime] = utc_now

    def record_results(self, suuid: str, results: Sequence[TestResult]) -> list[ResultOutcome]:
        """
        Append results to the ledger and advance the projected statuses.

        All infection ids are validated before anything is written.

        Raises:
            InvalidArgument: If results are empty or name an unknown infection
        """
        if not results:
            raise InvalidArgument("results array is required")
        results = [TestResult(r.infection_id, r.positive, as_utc(r.test_date)) for r in results]
        infections = {r.infection_id: self.catalog.get(r.infection_id) for r in results}

        health_pseudonym = self.deriver.health(suuid)
        test_pseudonym = self.deriver.test(suuid)

        outcomes: list[ResultOutcome] = []
        fresh_negatives: dict[str, datetime] = {}
        for result in results:
            self._append_ledger(test_pseudonym, result)
            outcome = self._apply(health_pseudonym, result, infections[result.infection_id])
            outcomes.append(outcome)
            if outcome.changed and outcome.health_status == HealthCode.NEGATIVE:
                fresh_negatives[result.infection_id] = result.test_date

        if fresh_negatives:
            self._inherit_negatives(suuid, fresh_negatives)
        return outcomes

    def expose(self, health_pseudonym: str, infection_id: str, exposure_date: datetime) -> bool:
        """
        Mark a record EXPOSED on behalf of an alert.

        A POSITIVE record is never downgraded; an EXPOSED record only has its
        date refreshed; new_alert is raised only on the first flip to EXPOSED.

        Returns:
            True if the record was written
        """
        doc_id = health_doc_id(health_pseudonym, infection_id)
        with self.store.transaction(f"{HEALTH_STATUS}:{doc_id}") as tx:
            doc = tx.get(HEALTH_STATUS, doc_id)
            record = HealthRecord.from_document(doc) if doc else HealthRecord(health_pseudonym, infection_id)

            if record.health_status == HealthCode.POSITIVE:
                logger.debug("Exposure refused for %s: record already positive", doc_id)
                return False
            if record.health_status == HealthCode.EXPOSED:
                record.status_date = exposure_date
            else:
                record.health_status = HealthCode.EXPOSED
                record.status_date = exposure_date
                record.new_alert = True
            tx.set(HEALTH_STATUS, doc_id, {**record.to_fields(), "updated_at": to_iso(self.clock())})
        logger.info("Health record %s marked exposed", doc_id)
        return True

    def current_code(self, suuid: str, infection_id: str) -> HealthCode:
        doc = self.store.get(HEALTH_STATUS, health_doc_id(self.deriver.health(suuid), infection_id))
        if doc is None:
            return HealthCode.NOT_TESTED
        return HealthRecord.from_document(doc).health_status

    def statuses(self, suuid: str, mask_dates: bool = False) -> list[StatusView]:
        """Current per-infection projection for a user, dates optionally bucketed."""
        health_pseudonym = self.deriver.health(suuid)
        docs = self.store.query(HEALTH_STATUS, Filter("health_pseudonym", "==", health_pseudonym))
        now = self.clock()

        views = []
        for doc in sorted(docs, key=lambda d: d.id):
            record = HealthRecord.from_document(doc)
            if record.status_date is None:
                shown = None
            elif mask_dates:
                shown = mask_date(record.status_date, now)
            else:
                shown = record.status_date.date().isoformat()
            views.append(StatusView(record.infection_id, record.health_status, shown, record.new_alert))
        return views

    def mark_alert_read(self, suuid: str, infection_id: str) -> None:
        """
        Clear the unread flag on one record; repeated calls are no-ops.

        Raises:
            NotFound: If the caller has no record for the infection
        """
        doc_id = health_doc_id(self.deriver.health(suuid), infection_id)
        with self.store.transaction(f"{HEALTH_STATUS}:{doc_id}") as tx:
            doc = tx.get(HEALTH_STATUS, doc_id)
            if doc is None:
                raise NotFound(f"healthStatus document not found for infection {infection_id}.")
            if doc.data.get("new_alert") is False:
                return
            tx.update(HEALTH_STATUS, doc_id, {"new_alert": False})

    def _append_ledger(self, test_pseudonym: str, result: TestResult) -> None:
        self.store.add(
            TEST_RESULTS,
            {
                "test_pseudonym": test_pseudonym,
                "infection_id": result.infection_id,
                "positive": result.positive,
                "test_date": to_iso(result.test_date),
                "created_at": to_iso(self.clock()),
            },
        )

    def _apply(self, health_pseudonym: str, result: TestResult, infection: Infection) -> ResultOutcome:
        doc_id = health_doc_id(health_pseudonym, result.infection_id)
        with self.store.transaction(f"{HEALTH_STATUS}:{doc_id}") as tx:
            doc = tx.get(HEALTH_STATUS, doc_id)
            record = HealthRecord.from_document(doc) if doc else HealthRecord(health_pseudonym, result.infection_id)
            transition = next_status(record, result.positive, result.test_date, infection)
            if transition is None:
                return ResultOutcome(result.infection_id, record.health_status, record.status_date, False)

            record.health_status, record.status_date = transition
            tx.set(HEALTH_STATUS, doc_id, {**record.to_fields(), "updated_at": to_iso(self.clock())})

        logger.info("Health record %s moved to %s", doc_id, record.health_status.name)
        return ResultOutcome(result.infection_id, record.health_status, record.status_date, True)

    def _inherit_negatives(self, suuid: str, negatives: dict[str, datetime]) -> None:
        """Advance the date (never the code) of bonded partners' older NEGATIVE records."""
        partners = active_partners(self.store, suuid, [ConnectionLevel.BOND_ELEVATED])
        updated = 0
        for partner in partners:
            partner_health = self.deriver.health(partner)
            for infection_id, test_date in negatives.items():
                doc_id = health_doc_id(partner_health, infection_id)
                with self.store.transaction(f"{HEALTH_STATUS}:{doc_id}") as tx:
                    doc = tx.get(HEALTH_STATUS, doc_id)
                    if doc is None:
                        continue
                    record = HealthRecord.from_document(doc)
                    if record.health_status != HealthCode.NEGATIVE or record.status_date is None:
                        continue
                    if record.status_date >= test_date:
                        continue
                    tx.update(
                        HEALTH_STATUS,
                        doc_id,
                        {"status_date": to_iso(test_date), "updated_at": to_iso(self.clock())},
                    )
                    updated += 1
        if updated:
            logger.info("Inherited negative date into %d partner record(s)", updated)
