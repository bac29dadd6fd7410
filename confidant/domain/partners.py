"""Connection lookups shared by the engines, checked in both directions."""

from collections.abc import Iterable

from .exceptions import NotFound, PermissionDenied
from .models import CONNECTIONS, Connection, ConnectionStatus
from .ports import DocumentStore, Filter


def active_partners(store: DocumentStore, suuid: str, levels: Iterable[int] | None = None) -> dict[str, int]:
    """
    Map each counterpart with an ACTIVE connection to the caller to its level.

    Args:
        store: Document store holding the connections collection
        suuid: Standard pseudonym of the user
        levels: Restrict to these levels; defaults to every level above BLOCKED

    Returns:
        Counterpart standard pseudonym -> highest active level with it
    """
    wanted = [int(level) for level in levels] if levels is not None else [2, 3, 4, 5]
    active = Filter("status", "==", int(ConnectionStatus.ACTIVE))
    by_level = Filter("level", "in", wanted)

    partners: dict[str, int] = {}
    for doc in store.query(CONNECTIONS, Filter("sender", "==", suuid), active, by_level):
        other = doc.data["recipient"]
        partners[other] = max(partners.get(other, 0), doc.data["level"])
    for doc in store.query(CONNECTIONS, Filter("recipient", "==", suuid), active, by_level):
        other = doc.data["sender"]
        partners[other] = max(partners.get(other, 0), doc.data["level"])
    return partners


def load_connection(store: DocumentStore, connection_id: str, suuid: str) -> Connection:
    """
    Fetch a connection the caller participates in.

    Raises:
        NotFound: If the connection does not exist
        PermissionDenied: If the caller is not a participant
    """
    doc = store.get(CONNECTIONS, connection_id)
    if doc is None:
        raise NotFound("Connection not found.")
    connection = Connection.from_document(doc)
    if not connection.involves(suuid):
        raise PermissionDenied("Caller is not a participant in this connection.")
    return connection
