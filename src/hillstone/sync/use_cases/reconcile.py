"""Reconcile Objects Use Case - keeps the local store in line with the firewall.

This use case depends only on ports, so it runs unchanged against
PostgreSQL in production and against in-memory fakes in tests.

Full sync workflow:
1. Open a ledger run (full_sync, started)
2. Ensure an authenticated session
3. Fetch every remote object
4. Upsert in batches, applying the conflict policy per object and saving
   progress to the ledger after each batch
5. Evict objects not synced within the retention window (if enabled)
6. Close the run as completed, or as failed and re-raise on any error

Per-object failures inside a batch are counted and logged but do not fail
the run.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TypeVar

from ...api.exceptions import (
    ErrorCollector,
    ObjectNotFoundError,
    PersistenceFailure,
    ReconciliationFailure,
    SyncCancelledError,
    SyncTimeoutError,
    ValidationFailure,
)
from ...config import ConflictPolicy, SyncSettings
from ..domain.entities import (
    AddressBookObject,
    LookupFailed,
    NotFound,
    ObjectAction,
    ObjectOutcome,
    OperationType,
    SyncCounts,
    SyncRun,
    SyncStatistics,
    SyncStatus,
    strip_markup,
    utcnow,
)
from ..domain.ports import IAddressBookAPI, IObjectRepository, ISyncRunRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: list[T], size: int) -> Iterator[list[T]]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None) or str(error)
    return message or error.__class__.__name__


class ReconcileObjectsUseCase:
    """Orchestrates full and single-object reconciliation.

    Example:
        use_case = ReconcileObjectsUseCase(
            api=HillstoneAddressBookAPI(client),
            objects=PostgresObjectRepository(pool),
            runs=PostgresSyncRunRepository(pool),
            settings=settings.sync,
        )
        run = await use_case.sync_all()
    """

    def __init__(
        self,
        api: IAddressBookAPI,
        objects: IObjectRepository,
        runs: ISyncRunRepository,
        settings: SyncSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.objects = objects
        self.runs = runs
        self.settings = settings or SyncSettings()
        self._clock = clock
        self._monotonic = monotonic

    # ----------------------------------------
    # Full sync
    # ----------------------------------------

    async def sync_all(self, cancel_event: asyncio.Event | None = None) -> SyncRun:
        """Reconcile every remote object.

        Args:
            cancel_event: When set, the sync stops before the next batch

        Returns:
            The completed SyncRun

        Raises:
            Whatever aborted the run, after the run is marked failed
        """
        run = await self.runs.create(OperationType.FULL_SYNC)
        counts = SyncCounts()
        errors = ErrorCollector()
        deadline = (
            self._monotonic() + self.settings.sync_timeout
            if self.settings.sync_timeout and self.settings.sync_timeout > 0
            else None
        )

        try:
            await self.api.authenticate()

            remote_objects = await self.api.list_all()
            batch_size = self.settings.batch_size
            total_batches = (len(remote_objects) + batch_size - 1) // batch_size
            logger.info(
                f"Sync run {run.id}: {len(remote_objects)} objects in "
                f"{total_batches} batches of {batch_size}"
            )

            for number, batch in enumerate(chunked(remote_objects, batch_size), start=1):
                self._checkpoint(cancel_event, deadline)
                await self._process_batch(batch, counts, errors)
                await self.runs.update_stats(run.id, counts)
                logger.info(
                    f"Sync run {run.id}: batch {number}/{total_batches} done "
                    f"({counts.processed} processed, {counts.failed} failed)"
                )

            if self.settings.cleanup_stale:
                cutoff = self._clock() - timedelta(days=self.settings.cleanup_after_days)
                counts.deleted += await self.objects.delete_stale(cutoff)

            if errors.has_errors():
                logger.warning(
                    f"Sync run {run.id}: {errors.count()} objects failed: "
                    f"{'; '.join(errors.summary())}"
                )

            completed = await self.runs.mark_completed(run.id, counts)
            logger.info(
                f"Sync run {run.id} completed: {counts.created} created, "
                f"{counts.updated} updated, {counts.deleted} deleted, {counts.failed} failed"
            )
            return completed

        except (Exception, asyncio.CancelledError) as e:
            await self._record_failure(run, e, counts)
            raise

    async def _process_batch(
        self,
        batch: list[AddressBookObject],
        counts: SyncCounts,
        errors: ErrorCollector,
    ) -> None:
        synced_at = self._clock()
        for obj in batch:
            try:
                outcome = await self.process_object(obj, synced_at)
            except Exception as e:
                counts.failed += 1
                errors.add(e, context={"name": obj.name})
                logger.error(f"Failed to sync object '{obj.name}': {e}")
                continue
            counts.record(outcome.action)

    async def process_object(self, obj: AddressBookObject, synced_at: datetime) -> ObjectOutcome:
        """Apply the conflict policy to one object and upsert it if allowed.

        The lookup and the upsert both use the stored form of the name.
        """
        name = strip_markup(obj.name)
        if not name:
            raise ValidationFailure("Object name is required", field="name")
        if name != obj.name:
            obj = replace(obj, name=name)

        existing = await self.objects.find_by_name(name)

        if existing is not None and self.settings.conflict_resolution is ConflictPolicy.SKIP_EXISTING:
            logger.debug(f"Skipping existing object '{name}'")
            return ObjectOutcome(name=name, action=ObjectAction.SKIPPED, record=existing)

        record = await self.objects.create_or_update(obj, synced_at)
        action = ObjectAction.CREATED if existing is None else ObjectAction.UPDATED
        return ObjectOutcome(name=name, action=action, record=record)

    def _checkpoint(self, cancel_event: asyncio.Event | None, deadline: float | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("Sync cancelled before next batch")
        if deadline is not None and self._monotonic() > deadline:
            raise SyncTimeoutError(timeout_seconds=self.settings.sync_timeout)

    async def _record_failure(self, run: SyncRun, error: BaseException, counts: SyncCounts) -> None:
        message = _error_message(error)
        logger.error(f"Sync run {run.id} failed: {message}")
        try:
            await self.runs.mark_failed(run.id, message, counts)
        except PersistenceFailure as ledger_error:
            logger.error(f"Could not record failure of sync run {run.id}: {ledger_error}")

    # ----------------------------------------
    # Single-object sync
    # ----------------------------------------

    async def sync_specific(self, name: str, create: bool = True) -> SyncRun:
        """Reconcile one object by name.

        Args:
            name: Object name on the firewall
            create: When False, refuse to create an object not yet stored locally

        Raises:
            ObjectNotFoundError: The firewall has no such object
            ReconciliationFailure: create=False and the object is not stored
        """
        run = await self.runs.create(OperationType.OBJECT_SYNC)
        counts = SyncCounts()

        try:
            await self.api.authenticate()

            result = await self.api.lookup(name)
            if isinstance(result, LookupFailed):
                raise result.error
            if isinstance(result, NotFound):
                raise ObjectNotFoundError(name)
            remote = result.value

            if not create and await self.objects.find_by_name(name) is None:
                raise ReconciliationFailure(
                    f"Object '{name}' is not stored locally and creation is disabled",
                    details={"name": name},
                )

            outcome = await self.process_object(remote, self._clock())
            counts.record(outcome.action)

            completed = await self.runs.mark_completed(run.id, counts)
            logger.info(f"Object '{name}' {outcome.action.value} (run {run.id})")
            return completed

        except (Exception, asyncio.CancelledError) as e:
            await self._record_failure(run, e, counts)
            raise

    # ----------------------------------------
    # Ledger queries
    # ----------------------------------------

    async def get_last_sync_status(self) -> SyncRun | None:
        return await self.runs.latest()

    async def is_sync_running(self) -> bool:
        """Soft check: any run still marked started. Not a lock."""
        return await self.runs.any_running()

    async def get_sync_statistics(self, days: int = 7) -> SyncStatistics:
        since = self._clock() - timedelta(days=days)
        runs = await self.runs.list_since(since)

        stats = SyncStatistics(period_days=days, total_syncs=len(runs))
        durations = []
        for run in runs:
            if run.status is SyncStatus.COMPLETED:
                stats.successful_syncs += 1
                if run.duration_seconds is not None:
                    durations.append(run.duration_seconds)
            elif run.status is SyncStatus.FAILED:
                stats.failed_syncs += 1
            else:
                stats.running_syncs += 1
            stats.total_objects_processed += run.objects_processed
            stats.total_objects_created += run.objects_created
            stats.total_objects_updated += run.objects_updated
            stats.total_objects_deleted += run.objects_deleted
            stats.total_objects_failed += run.objects_failed
            if run.started_at and (stats.last_sync is None or run.started_at > stats.last_sync):
                stats.last_sync = run.started_at

        if durations:
            stats.average_duration_seconds = round(sum(durations) / len(durations), 2)
        return stats
