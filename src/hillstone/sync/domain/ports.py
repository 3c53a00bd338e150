"""Port interfaces for reconciliation.

Ports define the contracts between the use cases and the infrastructure.
Use cases depend only on these interfaces; adapters implement them:

- IAddressBookAPI: the firewall (HillstoneAddressBookAPI)
- IObjectRepository: the local object store (PostgresObjectRepository)
- ISyncRunRepository: the sync run ledger (PostgresSyncRunRepository)
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .entities import (
    AddressBookObject,
    LocalObject,
    LookupResult,
    ObjectStatistics,
    OperationType,
    SyncCounts,
    SyncRun,
)

__all__ = [
    "IAddressBookAPI",
    "IObjectRepository",
    "ISyncRunRepository",
]


class IAddressBookAPI(ABC):
    """Port for reading address-book objects from the firewall."""

    @abstractmethod
    async def authenticate(self) -> bool:
        """Ensure a valid session. Raises AuthenticationFailure on failure."""
        ...

    @abstractmethod
    async def list_all(self) -> list[AddressBookObject]:
        """Fetch every object the firewall reports.

        Objects that cannot be mapped are logged and left out.
        """
        ...

    @abstractmethod
    async def lookup(self, name: str) -> LookupResult:
        """Fetch one object.

        Returns:
            Found(object), NotFound(name), or LookupFailed(name, error).
            Never raises for an absent object.
        """
        ...


class IObjectRepository(ABC):
    """Port for the local object store."""

    @abstractmethod
    async def find_by_name(self, name: str) -> LocalObject | None:
        """Load one object with its detail and IP entries, or None."""
        ...

    @abstractmethod
    async def create_or_update(self, obj: AddressBookObject, synced_at: datetime) -> LocalObject:
        """Validate and upsert an object, its detail and its IP entries atomically.

        The IP entries for the object are replaced, never merged.

        Raises:
            ValidationFailure: Name missing or too long; nothing is written
            PersistenceFailure: Storage error; the transaction is rolled back
        """
        ...

    @abstractmethod
    async def delete_stale(self, cutoff: datetime) -> int:
        """Delete objects with last_synced_at < cutoff or NULL.

        Per-row failures are logged and skipped.

        Returns:
            Number of objects actually deleted
        """
        ...

    @abstractmethod
    async def count_stale(self, cutoff: datetime) -> int:
        """How many objects delete_stale(cutoff) would target."""
        ...

    @abstractmethod
    async def statistics(self, now: datetime) -> ObjectStatistics:
        """Counts over the store, relative to now."""
        ...

    @abstractmethod
    async def objects_needing_sync(self, older_than: datetime) -> list[str]:
        """Names of objects not synced since older_than."""
        ...

    @abstractmethod
    async def update_last_synced(self, names: list[str], synced_at: datetime) -> int:
        """Touch last_synced_at for the given names. Returns rows updated."""
        ...


class ISyncRunRepository(ABC):
    """Port for the sync run ledger."""

    @abstractmethod
    async def create(self, operation_type: OperationType) -> SyncRun:
        """Insert a run with status=started."""
        ...

    @abstractmethod
    async def update_stats(self, run_id: int, counts: SyncCounts) -> None:
        """Persist in-progress counters for a running run."""
        ...

    @abstractmethod
    async def mark_completed(self, run_id: int, counts: SyncCounts) -> SyncRun:
        """Finalize as completed. Only the first terminal call takes effect."""
        ...

    @abstractmethod
    async def mark_failed(
        self, run_id: int, error_message: str, counts: SyncCounts | None = None
    ) -> SyncRun:
        """Finalize as failed. Only the first terminal call takes effect."""
        ...

    @abstractmethod
    async def get(self, run_id: int) -> SyncRun | None:
        ...

    @abstractmethod
    async def latest(self, operation_type: OperationType | None = None) -> SyncRun | None:
        """Most recent run by start time, any status."""
        ...

    @abstractmethod
    async def latest_with_status(
        self, status, operation_type: OperationType | None = None
    ) -> SyncRun | None:
        """Most recent run with the given status."""
        ...

    @abstractmethod
    async def any_running(
        self,
        operation_type: OperationType | None = None,
        started_after: datetime | None = None,
    ) -> bool:
        """True if a run with status=started exists, optionally filtered."""
        ...

    @abstractmethod
    async def completed_since(self, operation_type: OperationType, since: datetime) -> bool:
        """True if a run of this kind completed at or after since."""
        ...

    @abstractmethod
    async def recent(self, limit: int = 10) -> list[SyncRun]:
        """Newest runs first."""
        ...

    @abstractmethod
    async def list_since(self, since: datetime) -> list[SyncRun]:
        """Runs started at or after since."""
        ...

    @abstractmethod
    async def count_finished_before(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal runs started before cutoff. Running rows are kept."""
        ...
