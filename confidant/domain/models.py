"""
Domain models - enumerations and records for connections, health and alerts.

Records are plain dataclasses converted to and from store documents by
from_document() / to_fields(). Timestamps are stored as ISO-8601 strings in UTC.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from .ports import Document

CONNECTIONS = "connections"
HEALTH_STATUS = "healthStatus"
EXPOSURE_ALERTS = "exposureAlerts"
TEST_RESULTS = "testResults"
MEMBERSHIPS = "memberships"
PUBLIC_PROFILES = "publicProfiles"
INFECTION_REFERENCE = "infectionReference"


class PseudonymDomain(str, Enum):
    """Pseudonym domains; each non-standard domain has an independent key."""

    STANDARD = "standard"
    PROFILE = "profile"
    HEALTH = "health"
    TEST = "test"
    EXPOSURE = "exposure"
    MEMBERSHIP = "membership"


class ConnectionLevel(IntEnum):
    """Trust tiers, ordered from weakest to strongest."""

    BLOCKED = 1
    NEW = 2
    FRIEND = 3
    BOND = 4
    BOND_ELEVATED = 5


class ConnectionStatus(IntEnum):
    """
    Connection lifecycle status.

    PENDING and ACTIVE are non-terminal; everything from REJECTED up is a
    retired record that is kept, never deleted.
    """

    PENDING = 0
    ACTIVE = 1
    REJECTED = 2
    EXPIRED = 3
    DEACTIVATED = 4
    CANCELLED = 5


class HealthCode(IntEnum):
    """Projected health status for one infection."""

    NOT_TESTED = 0
    NEGATIVE = 1
    EXPOSED = 2
    POSITIVE = 3


class AlertStatus(IntEnum):
    """Exposure alert edge status."""

    PENDING = 0
    ACTIVE = 1
    SENT = 2
    DEACTIVATED = 3
    DECLINED = 4
    EXPIRED = 5


NON_TERMINAL_CONNECTION = [int(ConnectionStatus.PENDING), int(ConnectionStatus.ACTIVE)]
BONDED_LEVELS = [int(ConnectionLevel.BOND), int(ConnectionLevel.BOND_ELEVATED)]


def utc_now() -> datetime:
    """Current time, timezone-aware in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime for storage."""
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pair_lock_key(a: str, b: str) -> str:
    """Lock key for an unordered pair of standard pseudonyms."""
    first, second = sorted((a, b))
    return f"{CONNECTIONS}:{first}:{second}"


def health_doc_id(health_pseudonym: str, infection_id: str) -> str:
    """Document id of a health-status record."""
    return f"{health_pseudonym}_{infection_id}"


@dataclass
class Connection:
    """A trust relationship between two standard pseudonyms."""

    id: str
    sender: str
    recipient: str
    level: ConnectionLevel
    status: ConnectionStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None
    connected_at: datetime | None = None
    expires_at: datetime | None = None
    new_alert: bool = False

    @classmethod
    def from_document(cls, doc: Document) -> "Connection":
        data = doc.data
        return cls(
            id=doc.id,
            sender=data["sender"],
            recipient=data["recipient"],
            level=ConnectionLevel(data["level"]),
            status=ConnectionStatus(data["status"]),
            created_at=from_iso(data.get("created_at")),
            updated_at=from_iso(data.get("updated_at")),
            connected_at=from_iso(data.get("connected_at")),
            expires_at=from_iso(data.get("expires_at")),
            new_alert=bool(data.get("new_alert", False)),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "sender": self.sender,
            "recipient": self.recipient,
            "level": int(self.level),
            "status": int(self.status),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "connected_at": to_iso(self.connected_at),
            "expires_at": to_iso(self.expires_at),
            "new_alert": self.new_alert,
        }

    def involves(self, suuid: str) -> bool:
        return suuid in (self.sender, self.recipient)

    def counterpart(self, suuid: str) -> str:
        """The other participant; caller must already be a participant."""
        return self.recipient if suuid == self.sender else self.sender

    def is_stale(self, now: datetime) -> bool:
        """Pending request whose expiry has passed."""
        return (
            self.status == ConnectionStatus.PENDING
            and self.expires_at is not None
            and self.expires_at < now
        )


@dataclass
class HealthRecord:
    """Current projection of one user's status for one infection."""

    health_pseudonym: str
    infection_id: str
    health_status: HealthCode = HealthCode.NOT_TESTED
    status_date: datetime | None = None
    new_alert: bool = False

    @property
    def doc_id(self) -> str:
        return health_doc_id(self.health_pseudonym, self.infection_id)

    @classmethod
    def from_document(cls, doc: Document) -> "HealthRecord":
        data = doc.data
        raw_code = data.get("health_status", HealthCode.NOT_TESTED)
        try:
            code = HealthCode(raw_code)
        except ValueError:
            # Unrecognized codes follow the latest-wins rule of NEGATIVE.
            code = HealthCode.NEGATIVE
        return cls(
            health_pseudonym=data["health_pseudonym"],
            infection_id=data["infection_id"],
            health_status=code,
            status_date=from_iso(data.get("status_date")),
            new_alert=bool(data.get("new_alert", False)),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "health_pseudonym": self.health_pseudonym,
            "infection_id": self.infection_id,
            "health_status": int(self.health_status),
            "status_date": to_iso(self.status_date),
            "new_alert": self.new_alert,
        }


@dataclass
class AlertEdge:
    """Directed, infection-specific notification channel between exposure pseudonyms."""

    id: str
    infection_id: str
    sender: str
    recipient: str
    status: AlertStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None
    test_date: datetime | None = None

    @classmethod
    def from_document(cls, doc: Document) -> "AlertEdge":
        data = doc.data
        return cls(
            id=doc.id,
            infection_id=data["infection_id"],
            sender=data["sender"],
            recipient=data["recipient"],
            status=AlertStatus(data["status"]),
            created_at=from_iso(data.get("created_at")),
            updated_at=from_iso(data.get("updated_at")),
            test_date=from_iso(data.get("test_date")),
        )


@dataclass(frozen=True)
class Infection:
    """Reference row for one infection."""

    id: str
    name: str
    window_period_max: int
    treatment_period_min: int

    @classmethod
    def from_document(cls, doc: Document) -> "Infection":
        data = doc.data
        return cls(
            id=doc.id,
            name=data.get("name", doc.id),
            window_period_max=int(data.get("window_period_max", 0)),
            treatment_period_min=int(data.get("treatment_period_min", 0)),
        )


@dataclass(frozen=True)
class TestResult:
    """One submitted result: positive flag and test date for an infection."""

    __test__ = False

    infection_id: str
    positive: bool
    test_date: datetime


@dataclass(frozen=True)
class ResultOutcome:
    """Projected status after a result was applied."""

    infection_id: str
    health_status: HealthCode
    status_date: datetime | None
    changed: bool


@dataclass(frozen=True)
class ConnectionSummary:
    """A connection as listed for one participant."""

    connection_id: str
    counterpart_profile: str
    display_name: str | None
    image_url: str | None
    level: ConnectionLevel
    status: ConnectionStatus
    outgoing: bool
    new_alert: bool
    created_at: datetime | None
    expires_at: datetime | None
