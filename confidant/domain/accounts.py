"""
Account-facing services - pseudonym lookup, public profiles, membership
gate, and account erasure.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from .alerts import ExposureAlertEngine
from .exceptions import InvalidArgument, NotFound, PermissionDenied
from .models import (
    CONNECTIONS,
    HEALTH_STATUS,
    MEMBERSHIPS,
    NON_TERMINAL_CONNECTION,
    PUBLIC_PROFILES,
    TEST_RESULTS,
    ConnectionLevel,
    ConnectionStatus,
    PseudonymDomain,
    from_iso,
    to_iso,
    utc_now,
)
from .ports import AccountDirectory, Document, DocumentStore, Filter, chunked
from .pseudonyms import PseudonymDeriver

logger = logging.getLogger(__name__)

# Keep each erasure batch well under a typical 500-write batch limit.
ERASURE_BATCH_SIZE = 450


@dataclass(frozen=True)
class PublicProfile:
    """Display data shown to connected users."""

    display_name: str | None
    image_url: str | None


@dataclass(frozen=True)
class ErasureSummary:
    """Counts of records touched by an account erasure."""

    connections_retired: int
    alerts_retired: int
    health_records_deleted: int
    ledger_entries_deleted: int


@dataclass
class MembershipGate:
    """
    Read-only entitlement check over the memberships collection.

    A membership is active while its end_date has not passed.
    """

    store: DocumentStore
    deriver: PseudonymDeriver
    clock: Callable[[], datetime] = utc_now

    def is_active(self, account_id: str) -> bool:
        doc = self.store.get(MEMBERSHIPS, self.deriver.derive(PseudonymDomain.MEMBERSHIP, account_id=account_id))
        if doc is None:
            return False
        end_date = from_iso(doc.data.get("end_date"))
        return end_date is not None and end_date >= self.clock()

    def require_for_level(self, account_id: str, level: ConnectionLevel) -> None:
        """
        Raises:
            PermissionDenied: If the level needs a membership the caller lacks
        """
        if level >= ConnectionLevel.BOND and not self.is_active(account_id):
            raise PermissionDenied("An active membership is required for this connection level.")


@dataclass
class AccountService:
    """
    Domain service for caller-scoped account operations.

    Owns no engine state; erasure fans out over every collection that holds
    one of the caller's pseudonyms.
    """

    store: DocumentStore
    deriver: PseudonymDeriver
    directory: AccountDirectory
    alerts: ExposureAlertEngine
    clock: Callable[[], datetime] = utc_now

    def derive_pseudonym(
        self,
        account_id: str,
        domain: PseudonymDomain,
        precomputed_standard: str | None = None,
    ) -> str:
        """
        Derive one of the caller's domain pseudonyms.

        The standard pseudonym never leaves the backend, and a precomputed
        standard pseudonym is only honored when it is the caller's own.

        Raises:
            PermissionDenied: For the standard domain or a foreign precomputed value
            ConfigurationError: If the domain key is not provisioned
        """
        domain = PseudonymDomain(domain)
        if domain is PseudonymDomain.STANDARD:
            raise PermissionDenied("Standard pseudonyms are not exposed.")
        if precomputed_standard is not None and precomputed_standard != self.deriver.standard(account_id):
            raise PermissionDenied("Precomputed pseudonym does not belong to the caller.")
        return self.deriver.derive(domain, account_id=account_id, standard_pseudonym=precomputed_standard)

    def resolve_contact(self, contact: str) -> str | None:
        """Account id for a contact address, or None when unknown."""
        return self.directory.find_by_contact(contact.strip().lower())

    def get_profile(self, account_id: str) -> PublicProfile:
        """
        Raises:
            NotFound: If the caller has no public profile
        """
        doc = self.store.get(PUBLIC_PROFILES, self.deriver.derive(PseudonymDomain.PROFILE, account_id=account_id))
        if doc is None:
            raise NotFound("Public profile not found.")
        return PublicProfile(doc.data.get("display_name"), doc.data.get("image_url"))

    def update_profile(self, account_id: str, display_name: str, image_url: str | None = None) -> PublicProfile:
        if not display_name.strip():
            raise InvalidArgument("Missing displayName.")
        profile = PublicProfile(display_name.strip(), image_url)
        self.store.set(
            PUBLIC_PROFILES,
            self.deriver.derive(PseudonymDomain.PROFILE, account_id=account_id),
            {"display_name": profile.display_name, "image_url": profile.image_url},
            merge=True,
        )
        return profile

    def erase(self, account_id: str) -> ErasureSummary:
        """
        Erase an account.

        Retires every live connection and alert edge that references the
        caller, deletes the health projection and the test ledger, the
        public profile and membership record, and finally removes the
        account from the directory.
        """
        suuid = self.deriver.standard(account_id)
        now = to_iso(self.clock())

        live = Filter("status", "in", NON_TERMINAL_CONNECTION)
        connections = self.store.query(CONNECTIONS, Filter("sender", "==", suuid), live)
        connections += self.store.query(CONNECTIONS, Filter("recipient", "==", suuid), live)
        for chunk in chunked(connections, ERASURE_BATCH_SIZE):
            batch = self.store.batch()
            for doc in chunk:
                retired = (
                    ConnectionStatus.DEACTIVATED
                    if doc.data["status"] == ConnectionStatus.ACTIVE
                    else ConnectionStatus.CANCELLED
                )
                batch.update(CONNECTIONS, doc.id, {"status": int(retired), "updated_at": now})
            batch.commit()

        alerts_retired = self.alerts.retire_for(suuid)

        health_docs = self.store.query(HEALTH_STATUS, Filter("health_pseudonym", "==", self.deriver.health(suuid)))
        self._delete_all(HEALTH_STATUS, health_docs)
        ledger_docs = self.store.query(TEST_RESULTS, Filter("test_pseudonym", "==", self.deriver.test(suuid)))
        self._delete_all(TEST_RESULTS, ledger_docs)

        self.store.delete(PUBLIC_PROFILES, self.deriver.profile(suuid))
        self.store.delete(MEMBERSHIPS, self.deriver.membership(suuid))
        self.directory.delete(account_id)

        summary = ErasureSummary(
            connections_retired=len(connections),
            alerts_retired=alerts_retired,
            health_records_deleted=len(health_docs),
            ledger_entries_deleted=len(ledger_docs),
        )
        logger.info("Account erased: %s", summary)
        return summary

    def _delete_all(self, collection: str, docs: list[Document]) -> None:
        for chunk in chunked(docs, ERASURE_BATCH_SIZE):
            batch = self.store.batch()
            for doc in chunk:
                batch.delete(collection, doc.id)
            batch.commit()
