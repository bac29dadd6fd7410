"""
Infection reference data - read-only, cached for the life of the process.

Reference rows change rarely and the store stays the source of truth, so the
first successful load is kept and never invalidated.
"""

import logging
import threading

from .exceptions import InvalidArgument
from .models import INFECTION_REFERENCE, Infection
from .ports import DocumentStore

logger = logging.getLogger(__name__)


class InfectionCatalog:
    """Lazily loaded view over the infectionReference collection."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._rows: dict[str, Infection] | None = None
        self._lock = threading.Lock()

    def all(self) -> list[Infection]:
        return list(self._load().values())

    def ids(self) -> list[str]:
        return list(self._load())

    def get(self, infection_id: str) -> Infection:
        """
        Look up one infection.

        Raises:
            InvalidArgument: If the infection id is not in the reference table
        """
        rows = self._load()
        if infection_id not in rows:
            raise InvalidArgument(f"Unknown infection: {infection_id}")
        return rows[infection_id]

    def _load(self) -> dict[str, Infection]:
        if self._rows is not None:
            return self._rows
        with self._lock:
            if self._rows is None:
                docs = self._store.query(INFECTION_REFERENCE)
                rows = {doc.id: Infection.from_document(doc) for doc in sorted(docs, key=lambda d: d.id)}
                logger.info("Loaded %d infection reference rows", len(rows))
                self._rows = rows
        return self._rows
