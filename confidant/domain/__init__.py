"""
Domain layer - Pure business logic with zero framework imports.

This package contains the pseudonym derivation chain, the connection
lifecycle, the health status engine and the exposure alert engine. It
defines its own port interfaces for infrastructure abstraction, ensuring
true hexagonal architecture decoupling.
"""

from .accounts import AccountService, ErasureSummary, MembershipGate, PublicProfile
from .alerts import AlertRequestOutcome, ExposureAlertEngine
from .connections import ConnectionLifecycle
from .exceptions import (
    ConfidantError,
    ConfigurationError,
    Conflict,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    StoreError,
    Unauthenticated,
)
from .health import HealthStatusEngine, StatusView
from .models import (
    AlertStatus,
    Connection,
    ConnectionLevel,
    ConnectionStatus,
    ConnectionSummary,
    HealthCode,
    PseudonymDomain,
    ResultOutcome,
    TestResult,
)
from .ports import AccountDirectory, Document, DocumentStore, Filter
from .pseudonyms import PseudonymDeriver
from .reference import InfectionCatalog
from .submission import ResultSubmission

__all__ = [
    "AccountDirectory",
    "AccountService",
    "AlertRequestOutcome",
    "AlertStatus",
    "ConfidantError",
    "ConfigurationError",
    "Conflict",
    "Connection",
    "ConnectionLevel",
    "ConnectionLifecycle",
    "ConnectionStatus",
    "ConnectionSummary",
    "Document",
    "DocumentStore",
    "ErasureSummary",
    "ExposureAlertEngine",
    "FailedPrecondition",
    "Filter",
    "HealthCode",
    "HealthStatusEngine",
    "InfectionCatalog",
    "InvalidArgument",
    "MembershipGate",
    "NotFound",
    "PermissionDenied",
    "PseudonymDeriver",
    "PseudonymDomain",
    "PublicProfile",
    "ResultOutcome",
    "ResultSubmission",
    "StatusView",
    "StoreError",
    "TestResult",
    "Unauthenticated",
]
