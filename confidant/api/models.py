"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Fields are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from confidant.domain.models import PseudonymDomain


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmptyRequest(CamelModel):
    """Request body for operations that take no input."""


class DerivePseudonymRequest(CamelModel):
    domain: PseudonymDomain
    precomputed_standard_pseudonym: str | None = None


class DerivePseudonymResponse(CamelModel):
    domain: PseudonymDomain
    pseudonym: str


class ConnectionRequest(CamelModel):
    """Request model for a new connection."""

    recipient_contact: EmailStr
    override_block: bool = False


class ConnectionIdRequest(CamelModel):
    connection_id: str = Field(..., min_length=1)


class ConnectionStatusRequest(CamelModel):
    connection_id: str = Field(..., min_length=1)
    new_status: int = Field(..., description="1 accept, 2 reject, 4 disconnect, 5 cancel")


class ConnectionLevelRequest(CamelModel):
    connection_id: str = Field(..., min_length=1)
    current_level: int
    new_level: int


class ConnectionRecord(CamelModel):
    """A connection record as changed by a status or level operation."""

    connection_id: str
    level: int
    status: int


class ConnectionItem(CamelModel):
    """One entry of the caller's connection listing."""

    connection_id: str
    counterpart_pseudonym: str
    display_name: str | None
    image_url: str | None
    level: int
    status: int
    outgoing: bool
    new_alert: bool
    created_at: datetime | None
    expires_at: datetime | None


class ConnectionListResponse(CamelModel):
    connections: list[ConnectionItem]


class ExposureRespondRequest(CamelModel):
    connection_id: str = Field(..., min_length=1)
    decision: Literal["accept", "decline"]


class ExposureRequestResponse(CamelModel):
    expired_count: int
    created_count: int


class ExposureRespondResponse(CamelModel):
    updated_count: int


class TestResultInput(CamelModel):
    """One submitted test result."""

    __test__ = False

    infection_id: str = Field(..., min_length=1)
    positive: bool
    test_date: datetime


class SubmitResultsRequest(CamelModel):
    results: list[TestResultInput] = Field(..., min_length=1)


class ResultItem(CamelModel):
    infection_id: str
    health_status: int
    status_date: datetime | None
    changed: bool


class SubmitResultsResponse(CamelModel):
    results: list[ResultItem]


class HealthStatusesRequest(CamelModel):
    subject_pseudonym: str | None = Field(
        default=None,
        description="Profile pseudonym of an actively connected counterpart; omit for the caller's own statuses",
    )
    mask_dates: bool = False


class StatusItem(CamelModel):
    infection_id: str
    health_status: int
    status_date: str | None
    new_alert: bool


class HealthStatusesResponse(CamelModel):
    statuses: list[StatusItem]


class MarkAlertReadRequest(CamelModel):
    infection_id: str = Field(..., min_length=1)


class ProfileUpdateRequest(CamelModel):
    display_name: str = Field(..., min_length=1, max_length=80)
    image_url: str | None = None


class ProfileResponse(CamelModel):
    display_name: str | None
    image_url: str | None


class EraseAccountResponse(CamelModel):
    message: str
    connections_retired: int
    alerts_retired: int
    health_records_deleted: int
    ledger_entries_deleted: int


class MessageResponse(CamelModel):
    message: str


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: ErrorDetail
