"""
Domain error translation - maps domain exceptions onto HTTP responses.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from confidant.domain.exceptions import (
    ConfidantError,
    Conflict,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses (ConfigurationError) resolve to their parent's status.
_STATUS_CODES: list[tuple[type[ConfidantError], int]] = [
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (FailedPrecondition, status.HTTP_412_PRECONDITION_FAILED),
    (Conflict, status.HTTP_409_CONFLICT),
]


def to_http_exception(error: ConfidantError) -> HTTPException:
    """Build the HTTPException for a domain error."""
    status_code = next(
        (code for error_type, code in _STATUS_CODES if isinstance(error, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error("Request failed: %s", error)
        message = "Internal error"
    else:
        message = str(error) or error.code
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(status_code=status_code, detail={"code": error.code, "message": message}, headers=headers)


@contextmanager
def domain_errors() -> Iterator[None]:
    """Re-raise domain errors from the enclosed block as HTTPExceptions."""
    try:
        yield
    except ConfidantError as e:
        raise to_http_exception(e) from None
