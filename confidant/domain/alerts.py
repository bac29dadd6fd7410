"""
Exposure alert engine - directed alert edges between exposure pseudonyms.

An edge (infection, sender, recipient) watches the sender on the recipient's
behalf: when the sender reports a positive result the edge is SENT and the
recipient's health record is marked EXPOSED.

Edge lifecycle:
    PENDING -> ACTIVE | DECLINED   (respond_alerts)
    PENDING -> EXPIRED             (superseded by a new request, or erasure)
    ACTIVE  -> SENT                (sender tests positive)
    ACTIVE  -> DEACTIVATED         (sender tests negative, rollover, disconnect)

Fan-out writes are batched per infection and are not wrapped in a single
transaction. Every operation is defined over the currently ACTIVE or PENDING
edges, so re-running it after a partial failure converges.
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from .exceptions import FailedPrecondition
from .health import HealthStatusEngine
from .models import (
    EXPOSURE_ALERTS,
    AlertEdge,
    AlertStatus,
    ConnectionLevel,
    ConnectionStatus,
    HealthCode,
    TestResult,
    to_iso,
    utc_now,
)
from .partners import active_partners, load_connection
from .ports import DocumentStore, Filter
from .pseudonyms import PseudonymDeriver
from .reference import InfectionCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertRequestOutcome:
    """Counts reported back to the requester."""

    expired_count: int
    created_count: int


@dataclass
class ExposureAlertEngine:
    """
    Domain service owning the exposureAlerts collection.
    """

    store: DocumentStore
    deriver: PseudonymDeriver
    catalog: InfectionCatalog
    health: HealthStatusEngine
    clock: Callable[[], datetime] = utc_now

    def request_alerts(self, account_id: str, connection_id: str) -> AlertRequestOutcome:
        """
        Ask the other participant of a connection to share exposure alerts.

        The caller becomes the recipient of one PENDING edge per infection;
        earlier PENDING edges for the same direction are expired.

        Raises:
            NotFound: If the connection does not exist
            PermissionDenied: If the caller is not a participant
            FailedPrecondition: If the connection is not active above BLOCKED
        """
        suuid = self.deriver.standard(account_id)
        connection = load_connection(self.store, connection_id, suuid)
        if connection.status != ConnectionStatus.ACTIVE or connection.level == ConnectionLevel.BLOCKED:
            raise FailedPrecondition("Exposure alerts require an active connection.")

        caller_es = self.deriver.exposure(suuid)
        other_es = self.deriver.exposure(connection.counterpart(suuid))
        now = to_iso(self.clock())

        stale = self.store.query(
            EXPOSURE_ALERTS,
            Filter("sender", "==", other_es),
            Filter("recipient", "==", caller_es),
            Filter("status", "==", int(AlertStatus.PENDING)),
        )
        batch = self.store.batch()
        for doc in stale:
            batch.update(EXPOSURE_ALERTS, doc.id, {"status": int(AlertStatus.EXPIRED), "updated_at": now})
        infection_ids = self.catalog.ids()
        for infection_id in infection_ids:
            batch.add(EXPOSURE_ALERTS, self._edge_fields(infection_id, other_es, caller_es, AlertStatus.PENDING, now))
        batch.commit()

        logger.info(
            "Alert request on connection %s: %d expired, %d created",
            connection_id,
            len(stale),
            len(infection_ids),
        )
        return AlertRequestOutcome(expired_count=len(stale), created_count=len(infection_ids))

    def respond_alerts(self, account_id: str, connection_id: str, accept: bool) -> int:
        """
        Accept or decline the PENDING edges the other participant requested.

        Only the sender side (the caller, who might test positive) can respond.

        Returns:
            Number of edges resolved; 0 when nothing was pending
        """
        suuid = self.deriver.standard(account_id)
        connection = load_connection(self.store, connection_id, suuid)
        caller_es = self.deriver.exposure(suuid)
        other_es = self.deriver.exposure(connection.counterpart(suuid))

        pending = self.store.query(
            EXPOSURE_ALERTS,
            Filter("sender", "==", caller_es),
            Filter("recipient", "==", other_es),
            Filter("status", "==", int(AlertStatus.PENDING)),
        )
        if not pending:
            return 0

        new_status = AlertStatus.ACTIVE if accept else AlertStatus.DECLINED
        now = to_iso(self.clock())
        batch = self.store.batch()
        for doc in pending:
            batch.update(EXPOSURE_ALERTS, doc.id, {"status": int(new_status), "updated_at": now})
        batch.commit()

        logger.info("Connection %s: %d alert edge(s) -> %s", connection_id, len(pending), new_status.name)
        return len(pending)

    def on_test_results(self, suuid: str, results: Sequence[TestResult]) -> None:
        """
        Update the submitter's ACTIVE outgoing edges after a test submission.

        Positive results send the edge and expose its recipient. Negative
        results deactivate it and open fresh ACTIVE edges to every partner at
        the bonded tiers, so monitoring continues after a clearing result.
        An infection listed more than once counts as positive if any of its
        results is, dated by its latest result of that sign.
        """
        tested: dict[str, TestResult] = {}
        for result in results:
            kept = tested.get(result.infection_id)
            if kept is None or (result.positive, result.test_date) > (kept.positive, kept.test_date):
                tested[result.infection_id] = result
        if not tested:
            return

        sender_es = self.deriver.exposure(suuid)
        now = to_iso(self.clock())
        active = self.store.query(
            EXPOSURE_ALERTS,
            Filter("sender", "==", sender_es),
            Filter("status", "==", int(AlertStatus.ACTIVE)),
            Filter("infection_id", "in", list(tested)),
        )

        partners = active_partners(self.store, suuid)
        by_exposure = {self.deriver.exposure(partner): partner for partner in partners}

        sent: list[tuple[str, TestResult]] = []
        batch = self.store.batch()
        for doc in active:
            edge = AlertEdge.from_document(doc)
            result = tested[edge.infection_id]
            status = AlertStatus.SENT if result.positive else AlertStatus.DEACTIVATED
            batch.update(
                EXPOSURE_ALERTS,
                edge.id,
                {"status": int(status), "test_date": to_iso(result.test_date), "updated_at": now},
            )
            if result.positive:
                sent.append((edge.recipient, result))
        batch.commit()

        for recipient_es, result in sent:
            partner = by_exposure.get(recipient_es)
            if partner is None:
                logger.warning("Sent alert for %s has no active counterpart; exposure not recorded", result.infection_id)
                continue
            self.health.expose(self.deriver.health(partner), result.infection_id, result.test_date)

        negatives = [infection_id for infection_id, result in tested.items() if not result.positive]
        bonded = [partner for partner, level in partners.items() if level >= ConnectionLevel.BOND]
        if not negatives or not bonded:
            return

        for infection_id in negatives:
            batch = self.store.batch()
            for partner in bonded:
                recipient_es = self.deriver.exposure(partner)
                batch.add(EXPOSURE_ALERTS, self._edge_fields(infection_id, sender_es, recipient_es, AlertStatus.ACTIVE, now))
            batch.commit()
        logger.info(
            "Opened %d continuity alert edge(s) after negative results",
            len(negatives) * len(bonded),
        )

    def roll_over(self, suuid_a: str, suuid_b: str, first_partnership: bool) -> int:
        """
        Rebuild the alert edges of a pair entering trust tier 3 or above.

        Every ACTIVE edge between the pair is deactivated. On a first
        partnership every infection gets a fresh edge in both directions,
        seeded SENT (with exposure) where that direction's sender is already
        POSITIVE, unless that direction already holds a SENT edge for the
        infection. Otherwise only the deactivated edges are recreated.

        Returns:
            Number of edges created
        """
        es = {suuid_a: self.deriver.exposure(suuid_a), suuid_b: self.deriver.exposure(suuid_b)}
        now_dt = self.clock()
        now = to_iso(now_dt)

        existing = self._edges_between(es[suuid_a], es[suuid_b], AlertStatus.ACTIVE)
        if existing:
            batch = self.store.batch()
            for edge in existing:
                batch.update(EXPOSURE_ALERTS, edge.id, {"status": int(AlertStatus.DEACTIVATED), "updated_at": now})
            batch.commit()

        created = 0
        if first_partnership:
            disclosed = {
                (edge.infection_id, edge.sender, edge.recipient)
                for edge in self._edges_between(es[suuid_a], es[suuid_b], AlertStatus.SENT)
            }
            exposures: list[tuple[str, str]] = []
            for infection in self.catalog.all():
                batch = self.store.batch()
                for sender, recipient in ((suuid_a, suuid_b), (suuid_b, suuid_a)):
                    positive = self.health.current_code(sender, infection.id) == HealthCode.POSITIVE
                    if positive and (infection.id, es[sender], es[recipient]) in disclosed:
                        continue
                    status = AlertStatus.SENT if positive else AlertStatus.ACTIVE
                    batch.add(EXPOSURE_ALERTS, self._edge_fields(infection.id, es[sender], es[recipient], status, now))
                    if positive:
                        exposures.append((recipient, infection.id))
                created += len(batch)
                batch.commit()
            for recipient, infection_id in exposures:
                self.health.expose(self.deriver.health(recipient), infection_id, now_dt)
        else:
            by_infection: dict[str, set[tuple[str, str]]] = defaultdict(set)
            for edge in existing:
                by_infection[edge.infection_id].add((edge.sender, edge.recipient))
            for infection_id, directions in sorted(by_infection.items()):
                batch = self.store.batch()
                for sender_es, recipient_es in sorted(directions):
                    batch.add(EXPOSURE_ALERTS, self._edge_fields(infection_id, sender_es, recipient_es, AlertStatus.ACTIVE, now))
                created += len(batch)
                batch.commit()

        logger.info(
            "Alert rollover (%s): %d deactivated, %d created",
            "first partnership" if first_partnership else "tier change",
            len(existing),
            created,
        )
        return created

    def retire_between(self, suuid_a: str, suuid_b: str) -> int:
        """Retire every live edge between a pair (disconnect or block)."""
        es_a = self.deriver.exposure(suuid_a)
        es_b = self.deriver.exposure(suuid_b)
        edges = self._edges_between(es_a, es_b, AlertStatus.ACTIVE) + self._edges_between(es_a, es_b, AlertStatus.PENDING)
        return self._retire(edges)

    def retire_for(self, suuid: str) -> int:
        """Retire every live edge touching a user (account erasure)."""
        exposure = self.deriver.exposure(suuid)
        live = Filter("status", "in", [int(AlertStatus.PENDING), int(AlertStatus.ACTIVE)])
        docs = self.store.query(EXPOSURE_ALERTS, Filter("sender", "==", exposure), live)
        docs += self.store.query(EXPOSURE_ALERTS, Filter("recipient", "==", exposure), live)
        unique = {doc.id: AlertEdge.from_document(doc) for doc in docs}
        return self._retire(list(unique.values()))

    def _retire(self, edges: list[AlertEdge]) -> int:
        if not edges:
            return 0
        now = to_iso(self.clock())
        batch = self.store.batch()
        for edge in edges:
            status = AlertStatus.EXPIRED if edge.status == AlertStatus.PENDING else AlertStatus.DEACTIVATED
            batch.update(EXPOSURE_ALERTS, edge.id, {"status": int(status), "updated_at": now})
        batch.commit()
        logger.info("Retired %d alert edge(s)", len(edges))
        return len(edges)

    def _edges_between(self, es_a: str, es_b: str, status: AlertStatus) -> list[AlertEdge]:
        docs = self.store.query(
            EXPOSURE_ALERTS,
            Filter("sender", "in", [es_a, es_b]),
            Filter("recipient", "in", [es_a, es_b]),
            Filter("status", "==", int(status)),
        )
        return [AlertEdge.from_document(doc) for doc in docs if doc.data["sender"] != doc.data["recipient"]]

    @staticmethod
    def _edge_fields(infection_id: str, sender: str, recipient: str, status: AlertStatus, now: str | None) -> dict:
        return {
            "infection_id": infection_id,
            "sender": sender,
            "recipient": recipient,
            "status": int(status),
            "created_at": now,
            "updated_at": now,
        }
