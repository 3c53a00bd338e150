#!/usr/bin/env python3
"""Database utilities for the Hillstone synchronizer.

This module provides:
    - Transaction context managers with automatic commit/rollback
    - Connection pool management
    - Schema bootstrap from db/schema.sql
    - Conversion of asyncpg errors into PersistenceFailure subtypes

Example:
    async with database_transaction(pool) as conn:
        await conn.execute("INSERT INTO hillstone_objects ...")
        await conn.execute("INSERT INTO hillstone_object_data ...")
        # Commit on success, rollback on exception

Author: Hillstone Sync Team
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import asyncpg

from .exceptions import (
    ConnectionPoolError,
    HillstoneError,
    IntegrityError,
    PersistenceFailure,
    TransactionError,
)

logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT_SECONDS = 30.0

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[3] / "db" / "schema.sql"


async def _acquire(pool):
    if pool is None:
        raise ConnectionPoolError("Database connection pool is not initialized")
    try:
        return await asyncio.wait_for(pool.acquire(), timeout=ACQUIRE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        raise ConnectionPoolError(
            "Timeout acquiring database connection",
            details={"timeout_seconds": ACQUIRE_TIMEOUT_SECONDS},
        )
    except Exception as e:
        raise ConnectionPoolError(
            f"Failed to acquire database connection: {e}",
            cause=e,
        )


# ============================================
# Transaction Context Managers
# ============================================

@asynccontextmanager
async def database_transaction(
    pool,
    isolation: str = "read_committed",
    readonly: bool = False,
) -> AsyncIterator[Any]:
    """Acquire a connection and run the body inside one transaction.

    Args:
        pool: asyncpg connection pool
        isolation: "serializable", "repeatable_read" or "read_committed"
        readonly: If True, transaction is read-only

    Yields:
        Database connection within the transaction

    Raises:
        ConnectionPoolError: If a connection cannot be acquired
        TransactionError: If the transaction fails
        IntegrityError: If a constraint is violated
        PersistenceFailure: For any other storage error
    """
    conn = await _acquire(pool)
    try:
        transaction = conn.transaction(isolation=isolation, readonly=readonly)
        try:
            await transaction.start()
        except Exception as e:
            raise TransactionError(f"Failed to start transaction: {e}", cause=e)

        try:
            yield conn
            await transaction.commit()
            logger.debug("Transaction committed")

        except Exception as e:
            try:
                await transaction.rollback()
                logger.debug("Transaction rolled back")
            except Exception as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")

            raise _convert_db_exception(e)

    finally:
        await pool.release(conn)


@asynccontextmanager
async def database_connection(pool) -> AsyncIterator[Any]:
    """Acquire a plain connection with no transaction.

    Storage errors raised in the body surface as PersistenceFailure.

    Example:
        async with database_connection(pool) as conn:
            rows = await conn.fetch("SELECT name FROM hillstone_objects")
    """
    conn = await _acquire(pool)
    try:
        yield conn
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        raise _convert_db_exception(e)
    finally:
        await pool.release(conn)


# ============================================
# Error Conversion
# ============================================

def _convert_db_exception(e: Exception) -> Exception:
    """Map a storage exception onto the PersistenceFailure family.

    Errors that are already HillstoneError (for example a ValidationFailure
    raised inside a transaction body) pass through unchanged.
    """
    if isinstance(e, HillstoneError):
        return e

    if isinstance(e, asyncpg.UniqueViolationError):
        return IntegrityError(f"Duplicate entry: {e}", constraint="unique", cause=e)

    if isinstance(e, asyncpg.ForeignKeyViolationError):
        return IntegrityError(f"Foreign key violation: {e}", constraint="foreign_key", cause=e)

    if isinstance(e, asyncpg.NotNullViolationError):
        return IntegrityError(f"Not null violation: {e}", constraint="not_null", cause=e)

    if isinstance(e, asyncpg.DeadlockDetectedError):
        return TransactionError(f"Deadlock detected: {e}", operation="transaction", cause=e)

    if isinstance(e, (asyncio.TimeoutError, asyncpg.QueryCanceledError)):
        return TransactionError(f"Database operation timed out: {e}", operation="query", cause=e)

    if isinstance(e, (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)):
        return PersistenceFailure(f"Database operation failed: {e}", cause=e)

    # Programming errors and cancellation are not storage failures
    return e


# ============================================
# Pool and Schema Helpers
# ============================================

async def create_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    **kwargs,
):
    """Create an asyncpg pool.

    Raises:
        ConnectionPoolError: If pool creation fails
    """
    try:
        pool = await asyncpg.create_pool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            **kwargs,
        )
        logger.info(f"Database pool created (min={min_size}, max={max_size})")
        return pool
    except Exception as e:
        raise ConnectionPoolError(f"Failed to create database pool: {e}", cause=e)


async def close_pool(pool, timeout: float = 10.0):
    """Close the pool, terminating it if connections do not drain in time."""
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
        logger.info("Database pool closed")
    except asyncio.TimeoutError:
        logger.warning(f"Pool close timed out after {timeout}s, terminating")
        pool.terminate()


async def apply_schema(pool, path: Optional[Path] = None) -> None:
    """Run the idempotent DDL in db/schema.sql."""
    schema_path = Path(path) if path else DEFAULT_SCHEMA_PATH
    sql = schema_path.read_text()
    async with database_transaction(pool) as conn:
        await conn.execute(sql)
    logger.info(f"Schema applied from {schema_path}")


# ============================================
# Health Check
# ============================================

async def check_database_health(pool) -> dict[str, Any]:
    """Report whether the pool can run a trivial query."""
    if pool is None:
        return {"healthy": False, "error": "Pool not initialized"}

    try:
        async with database_connection(pool) as conn:
            result = await conn.fetchval("SELECT 1")
            pool_size = pool.get_size()
            pool_free = pool.get_idle_size()

            return {
                "healthy": result == 1,
                "pool_size": pool_size,
                "pool_free": pool_free,
                "pool_used": pool_size - pool_free,
            }

    except HillstoneError as e:
        return {"healthy": False, "error": str(e)}


__all__ = [
    "database_transaction",
    "database_connection",
    "create_pool",
    "close_pool",
    "apply_schema",
    "check_database_health",
]
