"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.

The document store is modelled on a transactional document database:
per-document reads and writes, multi-document batched writes, and
transactions serialized on caller-supplied lock keys.
"""

from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Protocol

# Comparison operators understood by every DocumentStore adapter.
FILTER_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")


@dataclass(frozen=True)
class Document:
    """A stored document: its id within the collection and its field data."""

    id: str
    data: dict[str, Any]


@dataclass(frozen=True)
class Filter:
    """
    A single field predicate for DocumentStore.query().

    Values are JSON scalars; `in` takes a list of scalars.
    """

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: dict[str, Any]) -> bool:
        """Evaluate the predicate against a document's data."""
        if self.field not in data:
            return False
        actual = data[self.field]
        if self.op == "in":
            return actual in self.value
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if actual is None or type(actual) is not type(self.value):
            return False
        if self.op == "<":
            return actual < self.value
        if self.op == "<=":
            return actual <= self.value
        if self.op == ">":
            return actual > self.value
        return actual >= self.value


class Transaction(Protocol):
    """
    Read-modify-write scope returned by DocumentStore.transaction().

    Writes are visible to later reads in the same transaction and are
    discarded if the transaction body raises.
    """

    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def query(self, collection: str, *filters: Filter) -> list[Document]: ...

    def add(self, collection: str, data: dict[str, Any]) -> str: ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None: ...

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None: ...


class WriteBatch(Protocol):
    """Buffered writes applied together by commit()."""

    def add(self, collection: str, data: dict[str, Any]) -> str: ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None: ...

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None: ...

    def delete(self, collection: str, doc_id: str) -> None: ...

    def __len__(self) -> int: ...

    def commit(self) -> None: ...


class DocumentStore(Protocol):
    """Port interface for document persistence."""

    def get(self, collection: str, doc_id: str) -> Document | None:
        """Fetch a single document, or None if absent."""
        ...

    def query(self, collection: str, *filters: Filter) -> list[Document]:
        """
        Return all documents in a collection matching every filter.

        With no filters, returns the whole collection.
        """
        ...

    def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a document under a generated id and return the id."""
        ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        """Create or replace a document (or merge fields into it)."""
        ...

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFound: If the document does not exist
        """
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting an absent document is a no-op."""
        ...

    def batch(self) -> WriteBatch:
        """Start a new write batch."""
        ...

    def transaction(self, *lock_keys: str) -> AbstractContextManager[Transaction]:
        """
        Open a transaction serialized against other transactions sharing a lock key.

        Lock keys name the document group being read and written (a connection
        pair, a health record). Commits on normal exit, rolls back on error.
        """
        ...


class AccountDirectory(Protocol):
    """
    Port interface for the authentication collaborator.

    The directory is the only component that knows raw account identifiers
    and contact addresses; the domain never persists either.
    """

    def authenticate(self, token: str) -> str | None:
        """Resolve a bearer token to an account id, or None if invalid."""
        ...

    def find_by_contact(self, contact: str) -> str | None:
        """Resolve a contact address (email) to an account id, or None."""
        ...

    def delete(self, account_id: str) -> None:
        """Remove the account from the directory."""
        ...


def chunked(items: list[Any], size: int) -> Iterator[list[Any]]:
    """Yield successive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]
