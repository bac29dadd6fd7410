"""
In-memory document store adapter - Implements DocumentStore protocol.

Thread-safe substitute for the PostgreSQL store, used by tests and by the
`memory` store backend. A single re-entrant lock serializes every operation;
transactions hold it for their whole body and undo their writes on error.
"""

import copy
import logging
import threading
import uuid
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from confidant.domain.exceptions import NotFound
from confidant.domain.models import INFECTION_REFERENCE
from confidant.domain.ports import Document, Filter

logger = logging.getLogger(__name__)

_MISSING = object()


class InMemoryDocumentStore:
    """
    Implements DocumentStore protocol over nested dictionaries.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Stored data is deep-copied on the way in and out, so callers can never
    mutate the store through a returned Document.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            data = self._collections[collection].get(doc_id)
            return Document(doc_id, copy.deepcopy(data)) if data is not None else None

    def query(self, collection: str, *filters: Filter) -> list[Document]:
        with self._lock:
            return [
                Document(doc_id, copy.deepcopy(data))
                for doc_id, data in self._collections[collection].items()
                if all(f.matches(data) for f in filters)
            ]

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        with self._lock:
            existing = self._collections[collection].get(doc_id)
            if merge and existing is not None:
                existing.update(copy.deepcopy(data))
            else:
                self._collections[collection][doc_id] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            existing = self._collections[collection].get(doc_id)
            if existing is None:
                raise NotFound(f"No document {collection}/{doc_id} to update.")
            existing.update(copy.deepcopy(fields))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._collections[collection].pop(doc_id, None)

    def batch(self) -> "InMemoryWriteBatch":
        return InMemoryWriteBatch(self)

    @contextmanager
    def transaction(self, *lock_keys: str) -> Iterator["InMemoryTransaction"]:
        with self._lock:
            tx = InMemoryTransaction(self)
            try:
                yield tx
            except BaseException:
                tx.rollback()
                raise

    def _snapshot(self, collection: str, doc_id: str) -> Any:
        data = self._collections[collection].get(doc_id, _MISSING)
        return data if data is _MISSING else copy.deepcopy(data)

    def _restore(self, collection: str, doc_id: str, snapshot: Any) -> None:
        if snapshot is _MISSING:
            self._collections[collection].pop(doc_id, None)
        else:
            self._collections[collection][doc_id] = snapshot


class InMemoryTransaction:
    """Transaction scope; writes apply immediately and are undone on rollback."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._undo: dict[tuple[str, str], Any] = {}

    def get(self, collection: str, doc_id: str) -> Document | None:
        return self._store.get(collection, doc_id)

    def query(self, collection: str, *filters: Filter) -> list[Document]:
        return self._store.query(collection, *filters)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._remember(collection, doc_id)
        self._store.set(collection, doc_id, data, merge=merge)

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._remember(collection, doc_id)
        self._store.update(collection, doc_id, fields)

    def rollback(self) -> None:
        for (collection, doc_id), snapshot in self._undo.items():
            self._store._restore(collection, doc_id, snapshot)
        logger.debug("Rolled back transaction touching %d document(s)", len(self._undo))
        self._undo.clear()

    def _remember(self, collection: str, doc_id: str) -> None:
        key = (collection, doc_id)
        if key not in self._undo:
            self._undo[key] = self._store._snapshot(collection, doc_id)


class InMemoryWriteBatch:
    """Buffered writes; commit() applies all of them or none."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._ops: list[tuple[str, str, str, Any]] = []

    def __len__(self) -> int:
        return len(self._ops)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._ops.append(("merge" if merge else "set", collection, doc_id, copy.deepcopy(data)))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._ops.append(("update", collection, doc_id, copy.deepcopy(fields)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._ops.append(("delete", collection, doc_id, None))

    def commit(self) -> None:
        with self._store.transaction() as tx:
            for op, collection, doc_id, data in self._ops:
                if op == "delete":
                    tx._remember(collection, doc_id)
                    self._store.delete(collection, doc_id)
                elif op == "update":
                    tx.update(collection, doc_id, data)
                else:
                    tx.set(collection, doc_id, data, merge=op == "merge")
        self._ops.clear()


# Mirrors migrations/002_seed_infection_reference.sql for the memory backend.
INFECTION_REFERENCE_SEED: dict[str, dict[str, Any]] = {
    "CHLAM": {"name": "Chlamydia", "window_period_max": 14, "treatment_period_min": 7},
    "GONO": {"name": "Gonorrhea", "window_period_max": 14, "treatment_period_min": 7},
    "HIV": {"name": "HIV", "window_period_max": 90, "treatment_period_min": 0},
    "SYPH": {"name": "Syphilis", "window_period_max": 90, "treatment_period_min": 14},
    "TRICH": {"name": "Trichomoniasis", "window_period_max": 28, "treatment_period_min": 7},
}


def seed_infection_reference(store: InMemoryDocumentStore) -> None:
    """Load the infection reference rows into a fresh in-memory store."""
    for infection_id, data in INFECTION_REFERENCE_SEED.items():
        store.set(INFECTION_REFERENCE, infection_id, data)
    logger.info("Seeded %d infection reference row(s)", len(INFECTION_REFERENCE_SEED))
