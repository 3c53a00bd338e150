"""Sync jobs - lock-guarded entry points used by the CLI and the scheduler.

Each job takes a named advisory lock in the shared cache before touching
the ledger, so two processes on the same database never run the same job
at once. A job whose lock is held is a no-op and returns None.

Lock names:
    hillstone-sync-all-objects          full sync, 1 hour TTL
    hillstone-sync-object-<md5(name)>   single-object sync, 10 minute TTL
    hillstone-cleanup-old-objects       retention cleanup, 30 minute TTL

A failed full sync keeps its lock until its last attempt so nothing else
starts between retries. The retrying caller passes the same owner token on
every attempt to re-enter the lock.
"""

import asyncio
import hashlib
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from ...api.cache import AdvisoryLock, ICacheStore
from ...config import SyncSettings
from ..domain.entities import OperationType, SyncRun, utcnow
from ..domain.ports import IObjectRepository, ISyncRunRepository
from .reconcile import ReconcileObjectsUseCase

logger = logging.getLogger(__name__)

SYNC_ALL_LOCK = "hillstone-sync-all-objects"
SYNC_ALL_LOCK_TTL = 3600
SYNC_OBJECT_LOCK_PREFIX = "hillstone-sync-object-"
SYNC_OBJECT_LOCK_TTL = 600
CLEANUP_LOCK = "hillstone-cleanup-old-objects"
CLEANUP_LOCK_TTL = 1800

RUNNING_FULL_SYNC_WINDOW = timedelta(hours=2)
RECENT_FULL_SYNC_WINDOW = timedelta(hours=1)
RUNNING_OBJECT_SYNC_WINDOW = timedelta(minutes=30)


def object_lock_key(name: str) -> str:
    digest = hashlib.md5(name.encode("utf-8")).hexdigest()
    return f"{SYNC_OBJECT_LOCK_PREFIX}{digest}"


class SyncJobRunner:
    """Runs sync and cleanup jobs under advisory locks.

    Example:
        jobs = SyncJobRunner(use_case, objects, runs, cache, settings.sync)
        run = await jobs.run_sync_all(force=True)
        if run is None:
            print("Another sync holds the lock")
    """

    def __init__(
        self,
        use_case: ReconcileObjectsUseCase,
        objects: IObjectRepository,
        runs: ISyncRunRepository,
        cache: ICacheStore,
        settings: SyncSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.use_case = use_case
        self.objects = objects
        self.runs = runs
        self.cache = cache
        self.settings = settings or SyncSettings()
        self._clock = clock

    async def run_sync_all(
        self,
        attempt: int = 1,
        max_attempts: int = 1,
        force: bool = False,
        owner: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncRun | None:
        """Run a full sync unless one is running or finished recently.

        Args:
            attempt: 1-based attempt number of this call
            max_attempts: Attempts the caller will make in total
            force: Ignore the "completed within the last hour" skip
            owner: Lock owner token shared by all attempts of one job
            cancel_event: Forwarded to the reconciliation

        Returns:
            The completed SyncRun, or None if the job was skipped
        """
        lock = AdvisoryLock(self.cache, SYNC_ALL_LOCK, SYNC_ALL_LOCK_TTL, owner=owner)
        if not await lock.acquire():
            logger.warning("Full sync already in progress, skipping")
            return None

        failed = False
        try:
            now = self._clock()

            if self.settings.prevent_concurrent_syncs and await self.runs.any_running(
                OperationType.FULL_SYNC, started_after=now - RUNNING_FULL_SYNC_WINDOW
            ):
                logger.warning("A full sync started in the last 2 hours is still running, skipping")
                return None

            if not force and await self.runs.completed_since(
                OperationType.FULL_SYNC, now - RECENT_FULL_SYNC_WINDOW
            ):
                logger.info("A full sync completed within the last hour, skipping (use force)")
                return None

            logger.info(f"Starting full sync (attempt {attempt}/{max_attempts})")
            return await self.use_case.sync_all(cancel_event=cancel_event)

        except (Exception, asyncio.CancelledError):
            failed = True
            raise

        finally:
            if not failed or attempt >= max_attempts:
                await lock.release()
            else:
                logger.info(f"Keeping lock {SYNC_ALL_LOCK} for attempt {attempt + 1}/{max_attempts}")

    async def release_sync_all(self, owner: str) -> bool:
        """Give up a full-sync lock kept for a retry that will not happen.

        Returns:
            False if the lock is held by someone else and was left alone
        """
        lock = AdvisoryLock(self.cache, SYNC_ALL_LOCK, SYNC_ALL_LOCK_TTL, owner=owner)
        if not await lock.acquire():
            return False
        return await lock.release()

    async def run_sync_specific(self, name: str, create: bool = True) -> SyncRun | None:
        """Sync one object unless a single-object sync is already running."""
        lock = AdvisoryLock(self.cache, object_lock_key(name), SYNC_OBJECT_LOCK_TTL)
        if not await lock.acquire():
            logger.warning(f"Sync of object '{name}' already in progress, skipping")
            return None

        try:
            started_after = self._clock() - RUNNING_OBJECT_SYNC_WINDOW
            if await self.runs.any_running(OperationType.OBJECT_SYNC, started_after=started_after):
                logger.warning("A single-object sync is still running, skipping")
                return None

            return await self.use_case.sync_specific(name, create=create)
        finally:
            await lock.release()

    async def run_cleanup(
        self, retention_days: int | None = None, dry_run: bool = False
    ) -> dict[str, Any] | None:
        """Evict stale objects and old ledger rows.

        Args:
            retention_days: Overrides cleanup_after_days when given
            dry_run: Count what would be deleted without deleting

        Returns:
            Dict with the cutoff and per-table counts, or None if skipped
        """
        lock = AdvisoryLock(self.cache, CLEANUP_LOCK, CLEANUP_LOCK_TTL)
        if not await lock.acquire():
            logger.warning("Cleanup already in progress, skipping")
            return None

        try:
            days = retention_days if retention_days is not None else self.settings.cleanup_after_days
            cutoff = self._clock() - timedelta(days=days)

            if dry_run:
                objects = await self.objects.count_stale(cutoff)
                sync_logs = await self.runs.count_finished_before(cutoff)
                logger.info(
                    f"Dry run: would delete {objects} objects and {sync_logs} sync logs "
                    f"older than {cutoff.isoformat()}"
                )
            else:
                objects = await self.objects.delete_stale(cutoff)
                sync_logs = await self.runs.delete_finished_before(cutoff)
                logger.info(
                    f"Cleanup deleted {objects} objects and {sync_logs} sync logs "
                    f"older than {cutoff.isoformat()}"
                )

            return {
                "dry_run": dry_run,
                "retention_days": days,
                "cutoff": cutoff.isoformat(),
                "objects_deleted": objects,
                "sync_logs_deleted": sync_logs,
            }
        finally:
            await lock.release()
