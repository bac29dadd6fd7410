"""Repository adapters - Document store implementations."""

from .memory import InMemoryDocumentStore, seed_infection_reference
from .postgres import PostgresDocumentStore, run_migrations

__all__ = ["InMemoryDocumentStore", "PostgresDocumentStore", "run_migrations", "seed_infection_reference"]
