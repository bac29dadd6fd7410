"""
PostgreSQL document store adapter - Implements DocumentStore protocol.

This module provides the PostgreSQL implementation of the domain's
document store port using psycopg3 with raw SQL.

Storage Design:
---------------
Every collection lives in a single `documents` table keyed by
(collection, id), with the document body in a JSONB column. Query filters
compile to `data -> field` comparisons against JSONB parameters, so
equality and ordering follow JSONB semantics.

Transactions take one transaction-scoped advisory lock per lock key
(`pg_advisory_xact_lock`), acquired in sorted order so two transactions
sharing keys can never deadlock on each other. The locks release on
COMMIT or ROLLBACK.
"""

import logging
import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from confidant.domain.exceptions import NotFound, StoreError
from confidant.domain.ports import Document, Filter

logger = logging.getLogger(__name__)

# Field names are interpolated as parameters, never as SQL; this only
# rejects names no domain record could carry.
_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COMPARISONS = {"==": "=", "!=": "<>", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


def _compile_filters(collection: str, filters: tuple[Filter, ...]) -> tuple[str, list[Any]]:
    """Build the WHERE clause and parameters for a collection query."""
    clauses = ["collection = %s"]
    params: list[Any] = [collection]
    for f in filters:
        if not _FIELD_NAME.match(f.field):
            raise ValueError(f"Invalid field name: {f.field!r}")
        if f.op == "in":
            # A JSONB array contains a scalar when the scalar is one of its elements.
            clauses.append("%s::jsonb @> (data -> %s::text)")
            params += [Jsonb(list(f.value)), f.field]
        elif f.op in ("==", "!="):
            clauses.append(f"data -> %s::text {_COMPARISONS[f.op]} %s::jsonb")
            params += [f.field, Jsonb(f.value)]
        else:
            if f.value is None:
                clauses.append("FALSE")
                continue
            clauses.append(
                f"jsonb_typeof(data -> %s::text) = jsonb_typeof(%s::jsonb) AND data -> %s::text {_COMPARISONS[f.op]} %s::jsonb"
            )
            params += [f.field, Jsonb(f.value), f.field, Jsonb(f.value)]
    return " AND ".join(clauses), params


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Surface driver failures as the domain's StoreError."""
    try:
        yield
    except psycopg.Error as e:
        logger.error("Document store failure: %s", e)
        raise StoreError("Document store unavailable.") from e


class _Statements:
    """SQL operations shared by the store, its transactions and its batches."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def get(self, collection: str, doc_id: str, for_update: bool = False) -> Document | None:
        sql = "SELECT data FROM documents WHERE collection = %s AND id = %s"
        if for_update:
            sql += " FOR UPDATE"
        row = self._conn.execute(sql, (collection, doc_id)).fetchone()
        return Document(doc_id, row[0]) if row is not None else None

    def query(self, collection: str, filters: tuple[Filter, ...]) -> list[Document]:
        where, params = _compile_filters(collection, filters)
        rows = self._conn.execute(f"SELECT id, data FROM documents WHERE {where} ORDER BY id", params).fetchall()
        return [Document(row[0], row[1]) for row in rows]

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool) -> None:
        conflict = "documents.data || EXCLUDED.data" if merge else "EXCLUDED.data"
        sql = f"""
            INSERT INTO documents (collection, id, data, updated_at)
            VALUES (%s, %s, %s, NOW())
            ON CONFLICT (collection, id) DO UPDATE
            SET data = {conflict}, updated_at = NOW()
        """
        self._conn.execute(sql, (collection, doc_id, Jsonb(data)))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        sql = """
            UPDATE documents
            SET data = data || %s, updated_at = NOW()
            WHERE collection = %s AND id = %s
        """
        cursor = self._conn.execute(sql, (Jsonb(fields), collection, doc_id))
        if cursor.rowcount == 0:
            raise NotFound(f"No document {collection}/{doc_id} to update.")

    def delete(self, collection: str, doc_id: str) -> None:
        self._conn.execute("DELETE FROM documents WHERE collection = %s AND id = %s", (collection, doc_id))


class PostgresDocumentStore:
    """
    Implements DocumentStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize store with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def get(self, collection: str, doc_id: str) -> Document | None:
        with _translate_errors(), self._pool.connection() as conn:
            return _Statements(conn).get(collection, doc_id)

    def query(self, collection: str, *filters: Filter) -> list[Document]:
        with _translate_errors(), self._pool.connection() as conn:
            return _Statements(conn).query(collection, filters)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        with _translate_errors(), self._pool.connection() as conn:
            _Statements(conn).set(collection, doc_id, data, merge)
            conn.commit()

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with _translate_errors(), self._pool.connection() as conn:
            _Statements(conn).update(collection, doc_id, fields)
            conn.commit()

    def delete(self, collection: str, doc_id: str) -> None:
        with _translate_errors(), self._pool.connection() as conn:
            _Statements(conn).delete(collection, doc_id)
            conn.commit()

    def batch(self) -> "PostgresWriteBatch":
        return PostgresWriteBatch(self._pool)

    @contextmanager
    def transaction(self, *lock_keys: str) -> Iterator["PostgresTransaction"]:
        """
        Open a transaction holding an advisory lock per key.

        The pool connection commits on normal exit and rolls back when the
        body raises, releasing the advisory locks either way.
        """
        with _translate_errors(), self._pool.connection() as conn:
            for key in sorted(set(lock_keys)):
                conn.execute("SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))", (key,))
            yield PostgresTransaction(conn)


class PostgresTransaction:
    """Transaction scope bound to one pooled connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._statements = _Statements(conn)

    def get(self, collection: str, doc_id: str) -> Document | None:
        return self._statements.get(collection, doc_id, for_update=True)

    def query(self, collection: str, *filters: Filter) -> list[Document]:
        return self._statements.query(collection, filters)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self._statements.set(collection, doc_id, data, merge=False)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._statements.set(collection, doc_id, data, merge)

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._statements.update(collection, doc_id, fields)


class PostgresWriteBatch:
    """Buffered writes executed in a single database transaction on commit()."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool
        self._ops: list[tuple[str, str, str, Any]] = []

    def __len__(self) -> int:
        return len(self._ops)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._ops.append(("merge" if merge else "set", collection, doc_id, data))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._ops.append(("update", collection, doc_id, fields))

    def delete(self, collection: str, doc_id: str) -> None:
        self._ops.append(("delete", collection, doc_id, None))

    def commit(self) -> None:
        if not self._ops:
            return
        with _translate_errors(), self._pool.connection() as conn:
            statements = _Statements(conn)
            for op, collection, doc_id, data in self._ops:
                if op == "delete":
                    statements.delete(collection, doc_id)
                elif op == "update":
                    statements.update(collection, doc_id, data)
                else:
                    statements.set(collection, doc_id, data, merge=op == "merge")
            conn.commit()
        self._ops.clear()


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: confidant/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
