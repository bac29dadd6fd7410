"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- An in-memory document store seeded with infection reference rows
- Domain engines wired over that store with a controllable clock
- A PostgreSQL pool for tests that need a real database (skipped when absent)
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from confidant.adapters.directory.memory import InMemoryAccountDirectory
from confidant.adapters.repository.memory import InMemoryDocumentStore, seed_infection_reference
from confidant.adapters.repository.postgres import run_migrations
from confidant.config.settings import get_settings
from confidant.domain.accounts import AccountService, MembershipGate
from confidant.domain.alerts import ExposureAlertEngine
from confidant.domain.connections import ConnectionLifecycle
from confidant.domain.health import HealthStatusEngine
from confidant.domain.models import Connection, ConnectionLevel, ConnectionStatus, PseudonymDomain
from confidant.domain.pseudonyms import PseudonymDeriver
from confidant.domain.reference import InfectionCatalog
from confidant.domain.submission import ResultSubmission

TEST_KEYS = {domain: f"test-{domain.value}-key" for domain in PseudonymDomain}

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Fresh in-memory store with the infection reference rows loaded."""
    store = InMemoryDocumentStore()
    seed_infection_reference(store)
    return store


@pytest.fixture
def deriver() -> PseudonymDeriver:
    return PseudonymDeriver(TEST_KEYS)


@pytest.fixture
def catalog(store: InMemoryDocumentStore) -> InfectionCatalog:
    return InfectionCatalog(store)


@pytest.fixture
def directory() -> InMemoryAccountDirectory:
    return InMemoryAccountDirectory()


@pytest.fixture
def health(store, deriver, catalog, clock) -> HealthStatusEngine:
    return HealthStatusEngine(store=store, deriver=deriver, catalog=catalog, clock=clock)


@pytest.fixture
def alerts(store, deriver, catalog, health, clock) -> ExposureAlertEngine:
    return ExposureAlertEngine(store=store, deriver=deriver, catalog=catalog, health=health, clock=clock)


@pytest.fixture
def lifecycle(store, deriver, alerts, clock) -> ConnectionLifecycle:
    return ConnectionLifecycle(store=store, deriver=deriver, alerts=alerts, clock=clock)


@pytest.fixture
def submission(health, alerts) -> ResultSubmission:
    return ResultSubmission(health=health, alerts=alerts)


@pytest.fixture
def accounts(store, deriver, directory, alerts, clock) -> AccountService:
    return AccountService(store=store, deriver=deriver, directory=directory, alerts=alerts, clock=clock)


@pytest.fixture
def membership(store, deriver, clock) -> MembershipGate:
    return MembershipGate(store=store, deriver=deriver, clock=clock)


@pytest.fixture
def connect(lifecycle: ConnectionLifecycle) -> Callable[..., Connection]:
    """
    Factory establishing an ACTIVE connection between two accounts.

    The first account requests and every elevation; the second accepts.
    Returns the ACTIVE record at the requested level.
    """

    def _connect(sender: str, recipient: str, level: ConnectionLevel = ConnectionLevel.NEW) -> Connection:
        connection = lifecycle.request(sender, recipient)
        connection = lifecycle.respond(recipient, connection.id, ConnectionStatus.ACTIVE)
        current = ConnectionLevel.NEW
        while current < level:
            pending = lifecycle.change_level(sender, connection.id, current, ConnectionLevel(current + 1))
            connection = lifecycle.respond(recipient, pending.id, ConnectionStatus.ACTIVE)
            current = ConnectionLevel(current + 1)
        return connection

    return _connect


@pytest.fixture(scope="session")
def pool() -> Generator[ConnectionPool, None, None]:
    """
    Connection pool against the configured database, with migrations applied.

    Skips the requesting test when PostgreSQL is not reachable.
    """
    settings = get_settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=False)
    try:
        pool.open(wait=True, timeout=3)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_documents(pool: ConnectionPool) -> Generator[None, None, None]:
    """Remove everything but the infection reference rows before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM documents WHERE collection <> 'infectionReference'")
        conn.commit()
    yield
