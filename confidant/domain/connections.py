"""
Connection lifecycle - the relationship state machine between two users.

States are (level, status) pairs over standard pseudonyms. A new request is
(NEW, PENDING). Records are never deleted; they retire into REJECTED,
EXPIRED, DEACTIVATED or CANCELLED.

Transitions:
    request          -> (NEW, PENDING)
    accept           PENDING -> ACTIVE, superseding the pair's other ACTIVE record
    reject / cancel  PENDING -> REJECTED / CANCELLED
    disconnect       ACTIVE  -> DEACTIVATED
    elevate          inserts a second (higher level, PENDING) record; the
                     ACTIVE record stays authoritative until it is accepted
    de-escalate      ACTIVE -> DEACTIVATED, inserts (lower level, ACTIVE)

Sender and recipient are not canonically ordered, so every duplicate check
looks at both directions, inside one transaction locked on the pair.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from .alerts import ExposureAlertEngine
from .exceptions import Conflict, FailedPrecondition, InvalidArgument, PermissionDenied
from .models import (
    CONNECTIONS,
    NON_TERMINAL_CONNECTION,
    PUBLIC_PROFILES,
    Connection,
    ConnectionLevel,
    ConnectionStatus,
    ConnectionSummary,
    pair_lock_key,
    to_iso,
    utc_now,
)
from .partners import active_partners, load_connection
from .ports import DocumentStore, Filter, Transaction
from .pseudonyms import PseudonymDeriver

logger = logging.getLogger(__name__)


@dataclass
class ConnectionLifecycle:
    """
    Domain service owning the connections collection.

    Calls into the alert engine after a pair reaches trust tier 3 or above,
    and when a pair disconnects or blocks.
    """

    store: DocumentStore
    deriver: PseudonymDeriver
    alerts: ExposureAlertEngine
    clock: Callable[[], datetime] = utc_now
    request_ttl: timedelta = timedelta(days=7)

    def request(self, sender_account: str, recipient_account: str, override_block: bool = False) -> Connection:
        """
        Create a pending connection request.

        Args:
            sender_account: Account id of the caller
            recipient_account: Account id resolved from the recipient's contact
            override_block: Lift the caller's own block on the recipient first

        Returns:
            The new (NEW, PENDING) connection

        Raises:
            InvalidArgument: If the caller tries to connect to themselves
            FailedPrecondition: If the caller blocked the recipient and did not override
            Conflict: If a pending or active connection already exists for the pair
        """
        if sender_account == recipient_account:
            raise InvalidArgument("Cannot connect to yourself.")
        sender = self.deriver.standard(sender_account)
        recipient = self.deriver.standard(recipient_account)
        now = self.clock()

        with self.store.transaction(pair_lock_key(sender, recipient)) as tx:
            live = self._pair_records(tx, sender, recipient, now)

            own_block = next(
                (
                    c
                    for c in live
                    if c.level == ConnectionLevel.BLOCKED
                    and c.status == ConnectionStatus.ACTIVE
                    and c.sender == sender
                ),
                None,
            )
            if own_block is not None:
                if not override_block:
                    raise FailedPrecondition("blocked-by-sender")
                self._set_status(tx, own_block, ConnectionStatus.DEACTIVATED, now)
                live.remove(own_block)
                logger.info("Block %s lifted by its sender before a new request", own_block.id)

            if live:
                raise Conflict("Active or pending connection exists.")

            connection = Connection(
                id="",
                sender=sender,
                recipient=recipient,
                level=ConnectionLevel.NEW,
                status=ConnectionStatus.PENDING,
                created_at=now,
                updated_at=now,
                expires_at=now + self.request_ttl,
                new_alert=True,
            )
            connection.id = tx.add(CONNECTIONS, connection.to_fields())

        logger.info("Connection request %s created", connection.id)
        return connection

    def respond(self, account_id: str, connection_id: str, new_status: ConnectionStatus) -> Connection:
        """
        Move a connection to a new status on behalf of a participant.

        ACTIVE accepts (recipient only), REJECTED rejects (recipient only),
        CANCELLED withdraws (sender only), DEACTIVATED disconnects (either,
        except that only the blocker can lift a block) and cancels the pair's
        pending requests.

        Raises:
            NotFound: If the connection does not exist
            PermissionDenied: If the caller may not make this transition
            FailedPrecondition: If the stored status does not allow it
            InvalidArgument: For any other target status
        """
        try:
            new_status = ConnectionStatus(new_status)
        except ValueError:
            raise InvalidArgument(f"Unsupported connection status: {new_status}") from None

        suuid = self.deriver.standard(account_id)
        connection = load_connection(self.store, connection_id, suuid)
        now = self.clock()
        prior_level: ConnectionLevel | None = None

        with self.store.transaction(pair_lock_key(connection.sender, connection.recipient)) as tx:
            connection = self._reload(tx, connection_id)

            if new_status == ConnectionStatus.ACTIVE:
                prior_level = self._accept(tx, connection, suuid, now)
            elif new_status == ConnectionStatus.REJECTED:
                self._require_pending(connection)
                if suuid != connection.recipient:
                    raise PermissionDenied("Only the recipient can reject a request.")
                self._set_status(tx, connection, ConnectionStatus.REJECTED, now)
            elif new_status == ConnectionStatus.CANCELLED:
                self._require_pending(connection)
                if suuid != connection.sender:
                    raise PermissionDenied("Only the requester can cancel a request.")
                self._set_status(tx, connection, ConnectionStatus.CANCELLED, now)
            elif new_status == ConnectionStatus.DEACTIVATED:
                if connection.status != ConnectionStatus.ACTIVE:
                    raise FailedPrecondition("Connection is not active.")
                if connection.level == ConnectionLevel.BLOCKED and suuid != connection.sender:
                    raise PermissionDenied("Only the blocker can lift a block.")
                self._set_status(tx, connection, ConnectionStatus.DEACTIVATED, now)
                for pending in self._pair_records(tx, connection.sender, connection.recipient, now):
                    if pending.status == ConnectionStatus.PENDING:
                        self._set_status(tx, pending, ConnectionStatus.CANCELLED, now)
            else:
                raise InvalidArgument(f"Unsupported connection status: {new_status.name}")

        logger.info("Connection %s -> %s", connection.id, new_status.name)

        if new_status == ConnectionStatus.ACTIVE and connection.level >= ConnectionLevel.FRIEND:
            first = prior_level is None or prior_level <= ConnectionLevel.FRIEND
            self.alerts.roll_over(connection.sender, connection.recipient, first_partnership=first)
        elif new_status == ConnectionStatus.DEACTIVATED:
            self.alerts.retire_between(connection.sender, connection.recipient)
        return connection

    def change_level(
        self,
        account_id: str,
        connection_id: str,
        current_level: ConnectionLevel,
        new_level: ConnectionLevel,
    ) -> Connection:
        """
        Elevate or de-escalate an active connection.

        Elevation leaves the active record untouched and inserts a PENDING
        record at the new level for the other participant to accept.
        De-escalation takes effect immediately: the active record is
        deactivated and an ACTIVE record at the new level replaces it.
        De-escalating to BLOCKED also cancels the pair's pending requests.

        Returns:
            The inserted record

        Raises:
            InvalidArgument: If a level is out of range or unchanged
            FailedPrecondition: If the record is not active or is a block, currentLevel is
                stale, or a duplicate record for the new level exists
        """
        try:
            current_level = ConnectionLevel(current_level)
            new_level = ConnectionLevel(new_level)
        except ValueError:
            raise InvalidArgument("Connection levels must be between 1 and 5.") from None
        if current_level == new_level:
            raise InvalidArgument("New level must differ from the current level.")
        if current_level == ConnectionLevel.BLOCKED:
            raise FailedPrecondition("Blocked connections cannot change level; send a new request instead.")

        suuid = self.deriver.standard(account_id)
        connection = load_connection(self.store, connection_id, suuid)
        other = connection.counterpart(suuid)
        now = self.clock()
        elevating = new_level > current_level

        with self.store.transaction(pair_lock_key(suuid, other)) as tx:
            connection = self._reload(tx, connection_id)
            if connection.status != ConnectionStatus.ACTIVE:
                raise FailedPrecondition("Connection is not active.")
            if connection.level != current_level:
                raise FailedPrecondition("The connection level does not match the provided currentLevel.")

            live = self._pair_records(tx, suuid, other, now)
            wanted = ConnectionStatus.PENDING if elevating else ConnectionStatus.ACTIVE
            if any(c.level == new_level and c.status == wanted and c.id != connection.id for c in live):
                raise FailedPrecondition("A record for this level already exists for the pair.")

            inserted = Connection(
                id="",
                sender=suuid,
                recipient=other,
                level=new_level,
                status=wanted,
                created_at=now,
                updated_at=now,
            )
            if elevating:
                inserted.expires_at = now + self.request_ttl
                inserted.new_alert = True
            else:
                self._set_status(tx, connection, ConnectionStatus.DEACTIVATED, now)
                inserted.connected_at = now
                if new_level == ConnectionLevel.BLOCKED:
                    for pending in (c for c in live if c.status == ConnectionStatus.PENDING):
                        self._set_status(tx, pending, ConnectionStatus.CANCELLED, now)
            inserted.id = tx.add(CONNECTIONS, inserted.to_fields())

        logger.info(
            "Connection %s: level %d -> %d (%s, record %s)",
            connection_id,
            current_level,
            new_level,
            "pending" if elevating else "active",
            inserted.id,
        )

        if not elevating:
            if new_level >= ConnectionLevel.FRIEND:
                first = current_level <= ConnectionLevel.FRIEND
                self.alerts.roll_over(suuid, other, first_partnership=first)
            elif new_level == ConnectionLevel.BLOCKED:
                self.alerts.retire_between(suuid, other)
        return inserted

    def list_connections(self, account_id: str) -> list[ConnectionSummary]:
        """All pending and active connections involving the caller, with counterpart display data."""
        suuid = self.deriver.standard(account_id)
        now = self.clock()
        live = Filter("status", "in", NON_TERMINAL_CONNECTION)
        docs = self.store.query(CONNECTIONS, Filter("sender", "==", suuid), live)
        docs += self.store.query(CONNECTIONS, Filter("recipient", "==", suuid), live)

        summaries = []
        for doc in docs:
            connection = Connection.from_document(doc)
            if connection.is_stale(now):
                self._expire(connection, now)
                continue
            counterpart = connection.counterpart(suuid)
            profile_pseudonym = self.deriver.profile(counterpart)
            profile = self.store.get(PUBLIC_PROFILES, profile_pseudonym)
            profile_data = profile.data if profile else {}
            summaries.append(
                ConnectionSummary(
                    connection_id=connection.id,
                    counterpart_profile=profile_pseudonym,
                    display_name=profile_data.get("display_name"),
                    image_url=profile_data.get("image_url"),
                    level=connection.level,
                    status=connection.status,
                    outgoing=connection.sender == suuid,
                    new_alert=connection.new_alert,
                    created_at=connection.created_at,
                    expires_at=connection.expires_at,
                )
            )
        summaries.sort(key=lambda s: (s.created_at is None, s.created_at), reverse=True)
        return summaries

    def mark_seen(self, account_id: str, connection_id: str) -> None:
        """Clear the connection's unread flag."""
        suuid = self.deriver.standard(account_id)
        load_connection(self.store, connection_id, suuid)
        self.store.update(CONNECTIONS, connection_id, {"new_alert": False, "updated_at": to_iso(self.clock())})

    def find_counterpart(self, account_id: str, profile_pseudonym: str) -> tuple[str, ConnectionLevel]:
        """
        Resolve an actively connected counterpart from their profile pseudonym.

        Returns:
            (counterpart standard pseudonym, active level)

        Raises:
            PermissionDenied: If no active connection above BLOCKED exists
        """
        suuid = self.deriver.standard(account_id)
        for partner, level in active_partners(self.store, suuid).items():
            if self.deriver.profile(partner) == profile_pseudonym:
                return partner, ConnectionLevel(level)
        raise PermissionDenied("No active connection with this user.")

    def _accept(self, tx: Transaction, connection: Connection, suuid: str, now: datetime) -> ConnectionLevel | None:
        """Accept a pending record; returns the level of the record it superseded."""
        self._require_pending(connection)
        if suuid != connection.recipient:
            raise PermissionDenied("Only the recipient can accept a request.")
        if connection.is_stale(now):
            raise FailedPrecondition("Connection request has expired.")

        others = [
            c for c in self._pair_records(tx, connection.sender, connection.recipient, now) if c.id != connection.id
        ]
        active = [c for c in others if c.status == ConnectionStatus.ACTIVE]
        if any(c.level == connection.level for c in active):
            raise FailedPrecondition("An active connection at this level already exists.")
        if connection.level > ConnectionLevel.NEW and not active:
            raise FailedPrecondition("No active connection to elevate.")

        prior_level = None
        for superseded in active:
            self._set_status(tx, superseded, ConnectionStatus.DEACTIVATED, now)
            prior_level = max(prior_level or superseded.level, superseded.level)

        fields = {"status": int(ConnectionStatus.ACTIVE), "updated_at": to_iso(now), "new_alert": True}
        if connection.connected_at is None:
            fields["connected_at"] = to_iso(now)
        tx.update(CONNECTIONS, connection.id, fields)
        connection.status = ConnectionStatus.ACTIVE
        return prior_level

    def _pair_records(self, tx: Transaction, a: str, b: str, now: datetime) -> list[Connection]:
        """Non-terminal records for the pair in either direction; stale requests are expired."""
        docs = tx.query(
            CONNECTIONS,
            Filter("sender", "in", [a, b]),
            Filter("recipient", "in", [a, b]),
            Filter("status", "in", NON_TERMINAL_CONNECTION),
        )
        live = []
        for doc in docs:
            connection = Connection.from_document(doc)
            if connection.sender == connection.recipient:
                continue
            if connection.is_stale(now):
                self._set_status(tx, connection, ConnectionStatus.EXPIRED, now)
                continue
            live.append(connection)
        return live

    def _expire(self, connection: Connection, now: datetime) -> None:
        with self.store.transaction(pair_lock_key(connection.sender, connection.recipient)) as tx:
            current = self._reload(tx, connection.id)
            if current.is_stale(now):
                self._set_status(tx, current, ConnectionStatus.EXPIRED, now)
                logger.info("Connection request %s expired", current.id)

    @staticmethod
    def _reload(tx: Transaction, connection_id: str) -> Connection:
        doc = tx.get(CONNECTIONS, connection_id)
        if doc is None:
            raise FailedPrecondition("Connection changed concurrently.")
        return Connection.from_document(doc)

    @staticmethod
    def _require_pending(connection: Connection) -> None:
        if connection.status != ConnectionStatus.PENDING:
            raise FailedPrecondition("Connection is not pending.")

    @staticmethod
    def _set_status(tx: Transaction, connection: Connection, status: ConnectionStatus, now: datetime) -> None:
        tx.update(CONNECTIONS, connection.id, {"status": int(status), "updated_at": to_iso(now)})
        connection.status = status
