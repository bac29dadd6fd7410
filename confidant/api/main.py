"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures logging, the document store, and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from confidant.adapters.directory.memory import InMemoryAccountDirectory
from confidant.adapters.repository import (
    InMemoryDocumentStore,
    PostgresDocumentStore,
    run_migrations,
    seed_infection_reference,
)
from confidant.api.v1 import router as v1_router
from confidant.config.settings import get_settings
from confidant.domain.reference import InfectionCatalog

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Anonymous exposure notification API v1 - Connections, health statuses and exposure alerts",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Configures logging from settings
    - Creates the document store (PostgreSQL pool or in-memory)
    - Runs migrations on startup
    - Closes connection pool on shutdown
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting application...")

    pool: ConnectionPool | None = None
    if settings.store_backend == "memory":
        logger.info("Using in-memory document store")
        store = InMemoryDocumentStore()
        seed_infection_reference(store)
    else:
        logger.info("Connecting to database...")
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )

        logger.info("Running database migrations...")
        run_migrations(pool)
        store = PostgresDocumentStore(pool)

    directory = InMemoryAccountDirectory()
    for email in settings.demo_accounts:
        _, token = directory.register(email)
        logger.info("[DIRECTORY] Demo token for %s: %s", email, token)

    # Store adapters in app state for dependency injection
    app.state.pool = pool
    app.state.store = store
    app.state.directory = directory
    app.state.catalog = InfectionCatalog(store)

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if pool is not None:
        pool.close()
        logger.info("Database connection pool closed")


app = FastAPI(
    title="confidant",
    description="Anonymous STI exposure notification API - pseudonymous connections, health statuses and alerts",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


@app.get("/health")
def health_check(request: Request) -> dict[str, str]:
    """
    Health check endpoint with database validation.

    Returns 200 OK if application and database are healthy.
    Raises exception if database connection fails.
    """
    pool = request.app.state.pool
    if pool is not None:
        with pool.connection() as conn:
            conn.execute("SELECT 1")

    return {"status": "healthy"}
