"""
API v1 routes.

Defines the authenticated RPC endpoints of the exposure-notification API.
Every route resolves the caller from the bearer token, delegates to a
domain service, and translates domain errors into HTTP responses.
"""

import logging

from fastapi import APIRouter, Depends, status

from confidant.api.dependencies import (
    get_account_service,
    get_alert_engine,
    get_caller_account,
    get_connection_lifecycle,
    get_health_engine,
    get_membership_gate,
    get_result_submission,
)
from confidant.api.errors import domain_errors
from confidant.api.models import (
    ConnectionIdRequest,
    ConnectionItem,
    ConnectionLevelRequest,
    ConnectionListResponse,
    ConnectionRecord,
    ConnectionRequest,
    ConnectionStatusRequest,
    DerivePseudonymRequest,
    DerivePseudonymResponse,
    EmptyRequest,
    EraseAccountResponse,
    ErrorResponse,
    ExposureRequestResponse,
    ExposureRespondRequest,
    ExposureRespondResponse,
    HealthStatusesRequest,
    HealthStatusesResponse,
    MarkAlertReadRequest,
    MessageResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    ResultItem,
    StatusItem,
    SubmitResultsRequest,
    SubmitResultsResponse,
)
from confidant.domain.accounts import AccountService, MembershipGate
from confidant.domain.alerts import ExposureAlertEngine
from confidant.domain.connections import ConnectionLifecycle
from confidant.domain.exceptions import InvalidArgument, PermissionDenied
from confidant.domain.health import HealthStatusEngine
from confidant.domain.models import ConnectionLevel, TestResult
from confidant.domain.submission import ResultSubmission

logger = logging.getLogger(__name__)

router = APIRouter(tags=["v1"])

# Unknown recipients get the same answer as real ones, so the endpoint
# cannot be used to probe which contacts hold accounts.
CONNECTION_QUEUED_MESSAGE = "Connection request sent"

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid argument"},
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Caller may not act on this record"},
    404: {"model": ErrorResponse, "description": "Referenced record not found"},
    412: {"model": ErrorResponse, "description": "Stored state does not allow the operation"},
    422: {"description": "Validation error"},
}


@router.post(
    "/pseudonyms/derive",
    response_model=DerivePseudonymResponse,
    responses=_ERRORS,
    summary="Derive one of the caller's domain pseudonyms",
)
def derive_pseudonym(
    request_data: DerivePseudonymRequest,
    account_id: str = Depends(get_caller_account),
    service: AccountService = Depends(get_account_service),
) -> DerivePseudonymResponse:
    with domain_errors():
        pseudonym = service.derive_pseudonym(
            account_id, request_data.domain, request_data.precomputed_standard_pseudonym
        )
    return DerivePseudonymResponse(domain=request_data.domain, pseudonym=pseudonym)


@router.post(
    "/connections/request",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_ERRORS, 409: {"model": ErrorResponse, "description": "Connection already exists"}},
    summary="Request a connection with another user",
    description="Creates a pending tier-2 connection with the account behind recipientContact. "
    "The response does not reveal whether the contact belongs to an account.",
)
def request_connection(
    request_data: ConnectionRequest,
    account_id: str = Depends(get_caller_account),
    accounts: AccountService = Depends(get_account_service),
    lifecycle: ConnectionLifecycle = Depends(get_connection_lifecycle),
) -> MessageResponse:
    """
    Request a connection.

    - **recipientContact**: Email address of the person to connect with
    - **overrideBlock**: Lift the caller's own block on that person first
    """
    with domain_errors():
        recipient = accounts.resolve_contact(request_data.recipient_contact)
        if recipient is None:
            logger.info("Connection request to unknown contact masked")
            return MessageResponse(message=CONNECTION_QUEUED_MESSAGE)
        lifecycle.request(account_id, recipient, override_block=request_data.override_block)
    return MessageResponse(message=CONNECTION_QUEUED_MESSAGE)


@router.post(
    "/connections/status",
    response_model=ConnectionRecord,
    responses=_ERRORS,
    summary="Accept, reject, cancel or disconnect a connection",
)
def respond_connection_status(
    request_data: ConnectionStatusRequest,
    account_id: str = Depends(get_caller_account),
    lifecycle: ConnectionLifecycle = Depends(get_connection_lifecycle),
) -> ConnectionRecord:
    with domain_errors():
        connection = lifecycle.respond(account_id, request_data.connection_id, request_data.new_status)
    return ConnectionRecord(connection_id=connection.id, level=int(connection.level), status=request_data.new_status)


@router.post(
    "/connections/level",
    response_model=ConnectionRecord,
    responses=_ERRORS,
    summary="Elevate or de-escalate a connection",
    description="Elevation creates a pending record at the new level for the other participant to accept; "
    "de-escalation takes effect immediately. Bond levels require an active membership.",
)
def change_connection_level(
    request_data: ConnectionLevelRequest,
    account_id: str = Depends(get_caller_account),
    lifecycle: ConnectionLifecycle = Depends(get_connection_lifecycle),
    membership: MembershipGate = Depends(get_membership_gate),
) -> ConnectionRecord:
    with domain_errors():
        if request_data.new_level > request_data.current_level:
            try:
                target = ConnectionLevel(request_data.new_level)
            except ValueError:
                raise InvalidArgument("Connection levels must be between 1 and 5.") from None
            membership.require_for_level(account_id, target)
        inserted = lifecycle.change_level(
            account_id, request_data.connection_id, request_data.current_level, request_data.new_level
        )
    return ConnectionRecord(connection_id=inserted.id, level=int(inserted.level), status=int(inserted.status))


@router.post(
    "/connections/list",
    response_model=ConnectionListResponse,
    responses=_ERRORS,
    summary="List the caller's pending and active connections",
)
def list_connections(
    request_data: EmptyRequest | None = None,
    account_id: str = Depends(get_caller_account),
    lifecycle: ConnectionLifecycle = Depends(get_connection_lifecycle),
) -> ConnectionListResponse:
    with domain_errors():
        summaries = lifecycle.list_connections(account_id)
    return ConnectionListResponse(
        connections=[
            ConnectionItem(
                connection_id=s.connection_id,
                counterpart_pseudonym=s.counterpart_profile,
                display_name=s.display_name,
                image_url=s.image_url,
                level=int(s.level),
                status=int(s.status),
                outgoing=s.outgoing,
                new_alert=s.new_alert,
                created_at=s.created_at,
                expires_at=s.expires_at,
            )
            for s in summaries
        ]
    )


@router.post(
    "/connections/seen",
    response_model=MessageResponse,
    responses=_ERRORS,
    summary="Clear a connection's unread flag",
)
def mark_connection_seen(
    request_data: ConnectionIdRequest,
    account_id: str = Depends(get_caller_account),
    lifecycle: ConnectionLifecycle = Depends(get_connection_lifecycle),
) -> MessageResponse:
    with domain_errors():
        lifecycle.mark_seen(account_id, request_data.connection_id)
    return MessageResponse(message="Connection marked as seen")


@router.post(
    "/exposure/request",
    response_model=ExposureRequestResponse,
    responses=_ERRORS,
    summary="Ask a connection to share exposure alerts",
)
def request_exposure_alerts(
    request_data: ConnectionIdRequest,
    account_id: str = Depends(get_caller_account),
    alerts: ExposureAlertEngine = Depends(get_alert_engine),
) -> ExposureRequestResponse:
    with domain_errors():
        outcome = alerts.request_alerts(account_id, request_data.connection_id)
    return ExposureRequestResponse(expired_count=outcome.expired_count, created_count=outcome.created_count)


@router.post(
    "/exposure/respond",
    response_model=ExposureRespondResponse,
    responses=_ERRORS,
    summary="Accept or decline a connection's exposure alert request",
)
def respond_exposure_alerts(
    request_data: ExposureRespondRequest,
    account_id: str = Depends(get_caller_account),
    alerts: ExposureAlertEngine = Depends(get_alert_engine),
) -> ExposureRespondResponse:
    with domain_errors():
        updated = alerts.respond_alerts(account_id, request_data.connection_id, request_data.decision == "accept")
    return ExposureRespondResponse(updated_count=updated)


@router.post(
    "/health/results",
    response_model=SubmitResultsResponse,
    responses=_ERRORS,
    summary="Submit test results",
    description="Records each result in the test history, applies it to the caller's health status "
    "and updates the caller's outgoing exposure alerts.",
)
def submit_test_results(
    request_data: SubmitResultsRequest,
    account_id: str = Depends(get_caller_account),
    submission: ResultSubmission = Depends(get_result_submission),
) -> SubmitResultsResponse:
    results = [TestResult(r.infection_id, r.positive, r.test_date) for r in request_data.results]
    with domain_errors():
        outcomes = submission.submit(account_id, results)
    return SubmitResultsResponse(
        results=[
            ResultItem(
                infection_id=o.infection_id,
                health_status=int(o.health_status),
                status_date=o.status_date,
                changed=o.changed,
            )
            for o in outcomes
        ]
    )


@router.post(
    "/health/statuses",
    response_model=HealthStatusesResponse,
    responses=_ERRORS,
    summary="Read current health statuses",
    description="Without subjectPseudonym, returns the caller's own statuses. With it, returns the statuses "
    "of an actively connected counterpart at Friend level or above; Friend-level views are always date-masked.",
)
def get_health_statuses(
    request_data: HealthStatusesRequest,
    account_id: str = Depends(get_caller_account),
    health: HealthStatusEngine = Depends(get_health_engine),
    lifecycle: ConnectionLifecycle = Depends(get_connection_lifecycle),
) -> HealthStatusesResponse:
    mask_dates = request_data.mask_dates
    with domain_errors():
        if request_data.subject_pseudonym is None:
            subject = health.deriver.standard(account_id)
        else:
            subject, level = lifecycle.find_counterpart(account_id, request_data.subject_pseudonym)
            if level < ConnectionLevel.FRIEND:
                raise PermissionDenied("Health statuses are shared from Friend level upward.")
            mask_dates = mask_dates or level == ConnectionLevel.FRIEND
        views = health.statuses(subject, mask_dates=mask_dates)
    return HealthStatusesResponse(
        statuses=[
            StatusItem(
                infection_id=v.infection_id,
                health_status=int(v.health_status),
                status_date=v.status_date,
                new_alert=v.new_alert,
            )
            for v in views
        ]
    )


@router.post(
    "/health/alert-read",
    response_model=MessageResponse,
    responses=_ERRORS,
    summary="Clear the unread flag on a health status",
)
def mark_alert_read(
    request_data: MarkAlertReadRequest,
    account_id: str = Depends(get_caller_account),
    health: HealthStatusEngine = Depends(get_health_engine),
) -> MessageResponse:
    with domain_errors():
        health.mark_alert_read(health.deriver.standard(account_id), request_data.infection_id)
    return MessageResponse(message="Alert marked as read")


@router.post(
    "/profile/get",
    response_model=ProfileResponse,
    responses=_ERRORS,
    summary="Read the caller's public profile",
)
def get_public_profile(
    request_data: EmptyRequest | None = None,
    account_id: str = Depends(get_caller_account),
    service: AccountService = Depends(get_account_service),
) -> ProfileResponse:
    with domain_errors():
        profile = service.get_profile(account_id)
    return ProfileResponse(display_name=profile.display_name, image_url=profile.image_url)


@router.post(
    "/profile/update",
    response_model=ProfileResponse,
    responses=_ERRORS,
    summary="Create or update the caller's public profile",
)
def update_public_profile(
    request_data: ProfileUpdateRequest,
    account_id: str = Depends(get_caller_account),
    service: AccountService = Depends(get_account_service),
) -> ProfileResponse:
    with domain_errors():
        profile = service.update_profile(account_id, request_data.display_name, request_data.image_url)
    return ProfileResponse(display_name=profile.display_name, image_url=profile.image_url)


@router.post(
    "/account/erase",
    response_model=EraseAccountResponse,
    responses=_ERRORS,
    summary="Erase the caller's account",
    description="Retires every connection and alert edge of the caller, deletes health records and "
    "test history, and removes the account. Former counterparts no longer see the caller.",
)
def erase_account(
    request_data: EmptyRequest | None = None,
    account_id: str = Depends(get_caller_account),
    service: AccountService = Depends(get_account_service),
) -> EraseAccountResponse:
    with domain_errors():
        summary = service.erase(account_id)
    return EraseAccountResponse(
        message="Account erased",
        connections_retired=summary.connections_retired,
        alerts_retired=summary.alerts_retired,
        health_records_deleted=summary.health_records_deleted,
        ledger_entries_deleted=summary.ledger_entries_deleted,
    )
