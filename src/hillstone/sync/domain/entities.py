"""Domain entities for address-book reconciliation.

These are pure data structures with no infrastructure dependencies.
Persisted entities match the tables in db/schema.sql.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

_TAG_RE = re.compile(r"<[^>]*>")


# ============================================
# Remote side
# ============================================

@dataclass
class Member:
    """One entry of an address-book object's member list.

    type is one of ipv4, ipv6, ipv4_cidr, ipv6_cidr, ipv4_range, hostname,
    reference. It is informational and does not change how members are stored.
    """

    name: str
    type: str
    value: str
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"name": self.name, "type": self.type, "value": self.value}
        if self.description:
            data["description"] = self.description
        return data


@dataclass
class RemoteDetail:
    """IP-level detail delivered with an object."""

    ip: list[Any] = field(default_factory=list)
    is_ipv6: bool = False
    predefined: bool = False


@dataclass
class AddressBookObject:
    """An address-book object as the firewall reports it.

    The raw_data field keeps the original payload for diagnostics.
    """

    name: str
    members: list[Member] = field(default_factory=list)
    is_ipv6: bool = False
    predefined: bool = False
    description: str = ""
    type: str = "address"
    last_modified: datetime | None = None
    detail: RemoteDetail | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


# ============================================
# Local side
# ============================================

@dataclass
class IPEntry:
    """A row of hillstone_object_data_ips."""

    ip_addr: str | None = None
    ip_address: str | None = None
    netmask: str | None = None
    flag: int = 0


@dataclass
class LocalObjectDetail:
    """A row of hillstone_object_data plus its IP entries."""

    name: str
    ip: list[Any] = field(default_factory=list)
    is_ipv6: bool = False
    predefined: bool = False
    last_synced_at: datetime | None = None
    ip_entries: list[IPEntry] = field(default_factory=list)
    id: int | None = None


@dataclass
class LocalObject:
    """A row of hillstone_objects, with its detail eagerly loaded."""

    name: str
    members: list[dict[str, Any]] = field(default_factory=list)
    is_ipv6: bool = False
    predefined: bool = False
    last_synced_at: datetime | None = None
    detail: LocalObjectDetail | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_stale(self, cutoff: datetime) -> bool:
        """Business rule: strictly older than the cutoff, or never synced."""
        return self.last_synced_at is None or self.last_synced_at < cutoff


# ============================================
# Sync runs
# ============================================

class OperationType(str, Enum):
    FULL_SYNC = "full_sync"
    PARTIAL_SYNC = "partial_sync"
    OBJECT_SYNC = "object_sync"


class SyncStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class ObjectAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class SyncCounts:
    """Running tally for one sync run."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0

    def record(self, action: ObjectAction) -> None:
        self.processed += 1
        if action is ObjectAction.CREATED:
            self.created += 1
        elif action is ObjectAction.UPDATED:
            self.updated += 1


@dataclass
class SyncRun:
    """A row of hillstone_sync_logs.

    Lifecycle: started -> completed | failed. completed_at is set exactly
    when the status becomes terminal.
    """

    id: int
    operation_type: OperationType
    status: SyncStatus = SyncStatus.STARTED
    objects_processed: int = 0
    objects_created: int = 0
    objects_updated: int = 0
    objects_deleted: int = 0
    objects_failed: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.status is SyncStatus.STARTED

    @property
    def is_terminal(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.FAILED)

    @property
    def duration_seconds(self) -> float | None:
        if not self.started_at or not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def counts(self) -> SyncCounts:
        return SyncCounts(
            processed=self.objects_processed,
            created=self.objects_created,
            updated=self.objects_updated,
            deleted=self.objects_deleted,
            failed=self.objects_failed,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["operation_type"] = self.operation_type.value
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass
class ObjectOutcome:
    """What happened to one object during a sync."""

    name: str
    action: ObjectAction
    record: LocalObject | None = None


@dataclass
class SyncStatistics:
    """Aggregates over the ledger for a trailing window."""

    period_days: int
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    running_syncs: int = 0
    total_objects_processed: int = 0
    total_objects_created: int = 0
    total_objects_updated: int = 0
    total_objects_deleted: int = 0
    total_objects_failed: int = 0
    last_sync: datetime | None = None
    average_duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_sync"] = self.last_sync.isoformat() if self.last_sync else None
        return data


@dataclass
class ObjectStatistics:
    """Counts over the local object store."""

    total: int = 0
    predefined: int = 0
    user_defined: int = 0
    ipv6: int = 0
    with_detail: int = 0
    synced_last_24h: int = 0
    stale_over_week: int = 0
    last_synced_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_synced_at"] = self.last_synced_at.isoformat() if self.last_synced_at else None
        return data


# ============================================
# Remote lookup result
# ============================================

@dataclass
class Found(Generic[T]):
    value: T


@dataclass
class NotFound:
    name: str


@dataclass
class LookupFailed:
    name: str
    error: Exception


LookupResult = Union[Found[AddressBookObject], NotFound, LookupFailed]


def utcnow() -> datetime:
    return datetime.now(UTC)


def strip_markup(value: Any) -> str:
    """Remove markup tags and surrounding whitespace. Object names are keyed on this form."""
    if value is None:
        return ""
    return _TAG_RE.sub("", str(value)).strip()
