"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
FastAPI caches each factory per request, so the engines built for one
request share a single store, deriver and health engine.
"""

from datetime import timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from confidant.api.errors import to_http_exception
from confidant.config.settings import Settings, get_settings
from confidant.domain.accounts import AccountService, MembershipGate
from confidant.domain.alerts import ExposureAlertEngine
from confidant.domain.connections import ConnectionLifecycle
from confidant.domain.exceptions import Unauthenticated
from confidant.domain.health import HealthStatusEngine
from confidant.domain.models import PseudonymDomain
from confidant.domain.ports import AccountDirectory, DocumentStore
from confidant.domain.pseudonyms import PseudonymDeriver
from confidant.domain.reference import InfectionCatalog
from confidant.domain.submission import ResultSubmission


def get_store(request: Request) -> DocumentStore:
    """
    Get document store from app state.

    The store is created during app lifespan startup and stored in app.state.
    """
    return request.app.state.store


def get_directory(request: Request) -> AccountDirectory:
    return request.app.state.directory


def get_catalog(request: Request) -> InfectionCatalog:
    """Get the process-wide infection reference cache."""
    return request.app.state.catalog


def get_deriver(settings: Settings = Depends(get_settings)) -> PseudonymDeriver:
    """Build the pseudonym deriver from the configured domain keys."""
    configured = {
        PseudonymDomain.STANDARD: settings.standard_hash_key,
        PseudonymDomain.PROFILE: settings.profile_hash_key,
        PseudonymDomain.HEALTH: settings.health_hash_key,
        PseudonymDomain.TEST: settings.test_hash_key,
        PseudonymDomain.EXPOSURE: settings.exposure_hash_key,
        PseudonymDomain.MEMBERSHIP: settings.membership_hash_key,
    }
    return PseudonymDeriver({domain: key.get_secret_value() for domain, key in configured.items() if key is not None})


def get_health_engine(
    store: DocumentStore = Depends(get_store),
    deriver: PseudonymDeriver = Depends(get_deriver),
    catalog: InfectionCatalog = Depends(get_catalog),
) -> HealthStatusEngine:
    return HealthStatusEngine(store=store, deriver=deriver, catalog=catalog)


def get_alert_engine(
    store: DocumentStore = Depends(get_store),
    deriver: PseudonymDeriver = Depends(get_deriver),
    catalog: InfectionCatalog = Depends(get_catalog),
    health: HealthStatusEngine = Depends(get_health_engine),
) -> ExposureAlertEngine:
    return ExposureAlertEngine(store=store, deriver=deriver, catalog=catalog, health=health)


def get_connection_lifecycle(
    store: DocumentStore = Depends(get_store),
    deriver: PseudonymDeriver = Depends(get_deriver),
    alerts: ExposureAlertEngine = Depends(get_alert_engine),
    settings: Settings = Depends(get_settings),
) -> ConnectionLifecycle:
    """
    Create connection lifecycle service with injected dependencies.

    Wires the alert engine in so tier changes roll alert edges over.
    """
    return ConnectionLifecycle(
        store=store,
        deriver=deriver,
        alerts=alerts,
        request_ttl=timedelta(days=settings.connection_request_ttl_days),
    )


def get_result_submission(
    health: HealthStatusEngine = Depends(get_health_engine),
    alerts: ExposureAlertEngine = Depends(get_alert_engine),
) -> ResultSubmission:
    return ResultSubmission(health=health, alerts=alerts)


def get_account_service(
    store: DocumentStore = Depends(get_store),
    deriver: PseudonymDeriver = Depends(get_deriver),
    directory: AccountDirectory = Depends(get_directory),
    alerts: ExposureAlertEngine = Depends(get_alert_engine),
) -> AccountService:
    return AccountService(store=store, deriver=deriver, directory=directory, alerts=alerts)


def get_membership_gate(
    store: DocumentStore = Depends(get_store),
    deriver: PseudonymDeriver = Depends(get_deriver),
) -> MembershipGate:
    return MembershipGate(store=store, deriver=deriver)


# Bearer token security scheme for OpenAPI documentation.
# auto_error is off so a missing header yields 401 rather than 403.
http_bearer = HTTPBearer(auto_error=False)


def get_caller_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    directory: AccountDirectory = Depends(get_directory),
) -> str:
    """
    Resolve the caller's account id from the bearer token.

    Raises:
        HTTPException: 401 if the header is missing or the token is unknown
    """
    if credentials is None:
        raise to_http_exception(Unauthenticated("Missing bearer token."))
    account_id = directory.authenticate(credentials.credentials)
    if account_id is None:
        raise to_http_exception(Unauthenticated("Invalid bearer token."))
    return account_id
