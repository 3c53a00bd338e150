"""PostgreSQL repository adapter for the sync run ledger.

This adapter implements ISyncRunRepository over hillstone_sync_logs.
Terminal transitions are guarded with WHERE status = 'started', so the
first mark_completed/mark_failed on a run wins and completed_at is written
exactly once.
"""

import logging
from datetime import datetime

import asyncpg

from ...api.database import database_connection, database_transaction
from ...api.exceptions import PersistenceFailure
from ..domain.entities import OperationType, SyncCounts, SyncRun, SyncStatus
from ..domain.ports import ISyncRunRepository

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, operation_type, status, objects_processed, objects_created,
    objects_updated, objects_deleted, objects_failed, error_message,
    started_at, completed_at
"""


def _row_to_run(row) -> SyncRun:
    return SyncRun(
        id=row["id"],
        operation_type=OperationType(row["operation_type"]),
        status=SyncStatus(row["status"]),
        objects_processed=row["objects_processed"],
        objects_created=row["objects_created"],
        objects_updated=row["objects_updated"],
        objects_deleted=row["objects_deleted"],
        objects_failed=row["objects_failed"],
        error_message=row["error_message"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


class PostgresSyncRunRepository(ISyncRunRepository):
    """PostgreSQL implementation of ISyncRunRepository."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create(self, operation_type: OperationType) -> SyncRun:
        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO hillstone_sync_logs (operation_type, status, started_at)
                VALUES ($1, 'started', NOW())
                RETURNING {_COLUMNS}
                """,
                operation_type.value,
            )
        run = _row_to_run(row)
        logger.info(f"Sync run {run.id} started ({operation_type.value})")
        return run

    async def update_stats(self, run_id: int, counts: SyncCounts) -> None:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                UPDATE hillstone_sync_logs SET
                    objects_processed = $2,
                    objects_created = $3,
                    objects_updated = $4,
                    objects_deleted = $5,
                    objects_failed = $6,
                    updated_at = NOW()
                WHERE id = $1 AND status = 'started'
                """,
                run_id,
                counts.processed,
                counts.created,
                counts.updated,
                counts.deleted,
                counts.failed,
            )

    async def _finish(
        self,
        run_id: int,
        status: SyncStatus,
        error_message: str | None,
        counts: SyncCounts | None,
    ) -> SyncRun:
        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE hillstone_sync_logs SET
                    status = $2,
                    error_message = COALESCE($3, error_message),
                    objects_processed = COALESCE($4, objects_processed),
                    objects_created = COALESCE($5, objects_created),
                    objects_updated = COALESCE($6, objects_updated),
                    objects_deleted = COALESCE($7, objects_deleted),
                    objects_failed = COALESCE($8, objects_failed),
                    completed_at = NOW(),
                    updated_at = NOW()
                WHERE id = $1 AND status = 'started'
                RETURNING {_COLUMNS}
                """,
                run_id,
                status.value,
                error_message,
                counts.processed if counts else None,
                counts.created if counts else None,
                counts.updated if counts else None,
                counts.deleted if counts else None,
                counts.failed if counts else None,
            )
            if row is None:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM hillstone_sync_logs WHERE id = $1", run_id
                )
                if row is None:
                    raise PersistenceFailure(
                        f"Sync run {run_id} does not exist",
                        details={"run_id": run_id},
                    )
                logger.warning(
                    f"Sync run {run_id} already {row['status']}, ignoring mark {status.value}"
                )

        return _row_to_run(row)

    async def mark_completed(self, run_id: int, counts: SyncCounts) -> SyncRun:
        run = await self._finish(run_id, SyncStatus.COMPLETED, None, counts)
        logger.info(f"Sync run {run_id} finished with status {run.status.value}")
        return run

    async def mark_failed(
        self, run_id: int, error_message: str, counts: SyncCounts | None = None
    ) -> SyncRun:
        run = await self._finish(run_id, SyncStatus.FAILED, error_message, counts)
        logger.info(f"Sync run {run_id} finished with status {run.status.value}")
        return run

    # ----------------------------------------
    # Queries
    # ----------------------------------------

    async def get(self, run_id: int) -> SyncRun | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM hillstone_sync_logs WHERE id = $1", run_id
            )
        return _row_to_run(row) if row else None

    async def latest(self, operation_type: OperationType | None = None) -> SyncRun | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS} FROM hillstone_sync_logs
                WHERE ($1::text IS NULL OR operation_type = $1)
                ORDER BY started_at DESC, id DESC
                LIMIT 1
                """,
                operation_type.value if operation_type else None,
            )
        return _row_to_run(row) if row else None

    async def latest_with_status(
        self, status: SyncStatus, operation_type: OperationType | None = None
    ) -> SyncRun | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS} FROM hillstone_sync_logs
                WHERE status = $1
                  AND ($2::text IS NULL OR operation_type = $2)
                ORDER BY started_at DESC, id DESC
                LIMIT 1
                """,
                status.value,
                operation_type.value if operation_type else None,
            )
        return _row_to_run(row) if row else None

    async def any_running(
        self,
        operation_type: OperationType | None = None,
        started_after: datetime | None = None,
    ) -> bool:
        async with database_connection(self.pool) as conn:
            return await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM hillstone_sync_logs
                    WHERE status = 'started'
                      AND ($1::text IS NULL OR operation_type = $1)
                      AND ($2::timestamptz IS NULL OR started_at >= $2)
                )
                """,
                operation_type.value if operation_type else None,
                started_after,
            )

    async def completed_since(self, operation_type: OperationType, since: datetime) -> bool:
        async with database_connection(self.pool) as conn:
            return await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM hillstone_sync_logs
                    WHERE status = 'completed'
                      AND operation_type = $1
                      AND completed_at >= $2
                )
                """,
                operation_type.value,
                since,
            )

    async def recent(self, limit: int = 10) -> list[SyncRun]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM hillstone_sync_logs
                ORDER BY started_at DESC, id DESC
                LIMIT $1
                """,
                limit,
            )
        return [_row_to_run(r) for r in rows]

    async def list_since(self, since: datetime) -> list[SyncRun]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM hillstone_sync_logs
                WHERE started_at >= $1
                ORDER BY started_at DESC, id DESC
                """,
                since,
            )
        return [_row_to_run(r) for r in rows]

    async def count_finished_before(self, cutoff: datetime) -> int:
        async with database_connection(self.pool) as conn:
            return await conn.fetchval(
                """
                SELECT COUNT(*) FROM hillstone_sync_logs
                WHERE status <> 'started' AND started_at < $1
                """,
                cutoff,
            )

    async def delete_finished_before(self, cutoff: datetime) -> int:
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                """
                DELETE FROM hillstone_sync_logs
                WHERE status <> 'started' AND started_at < $1
                """,
                cutoff,
            )
        return int(result.split()[-1])
