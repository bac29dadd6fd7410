"""
Domain exceptions - Semantic error types for the exposure-notification core.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Each class maps to one entry of the error taxonomy surfaced to callers.
"""


class ConfidantError(Exception):
    """Base class for domain errors."""

    code = "internal"


class Unauthenticated(ConfidantError):
    """No caller identity could be established."""

    code = "unauthenticated"


class InvalidArgument(ConfidantError):
    """Missing or malformed input."""

    code = "invalid-argument"


class NotFound(ConfidantError):
    """Referenced document is absent."""

    code = "not-found"


class PermissionDenied(ConfidantError):
    """Caller is not a participant of the referenced record, or lacks entitlement."""

    code = "permission-denied"


class FailedPrecondition(ConfidantError):
    """Stored state does not allow the requested transition."""

    code = "failed-precondition"


class ConfigurationError(FailedPrecondition):
    """A pseudonym key required for a derivation is not provisioned."""

    pass


class Conflict(ConfidantError):
    """A non-terminal connection already exists for the pair."""

    code = "conflict"


class StoreError(ConfidantError):
    """The document store failed."""

    code = "internal"
