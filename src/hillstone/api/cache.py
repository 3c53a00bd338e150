"""Shared key/value cache used for the session and for advisory locks.

Two backings implement the same ICacheStore capability:

    - InMemoryCache: per-process, good for tests and the one-shot CLI
    - PostgresCache: a hillstone_cache table, so the scheduler and ad-hoc
      CLI runs on one host share a session and see each other's locks

AdvisoryLock sits on top of add()/forget(). It is cooperative only: a
caller that ignores it is not stopped.
"""
import asyncio
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Optional

from .database import database_connection

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class ICacheStore(ABC):
    """Capability interface for a TTL cache."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the value for key, or None if missing or expired."""
        ...

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: float) -> None:
        """Store value under key for ttl seconds, replacing any existing value."""
        ...

    @abstractmethod
    async def forget(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        ...

    @abstractmethod
    async def add(self, key: str, value: Any, ttl: float) -> bool:
        """Store value only if key is absent or expired.

        Returns:
            True if the value was stored, False if a live entry already existed.
        """
        ...


class InMemoryCache(ICacheStore):
    """Process-local TTL cache guarded by an asyncio.Lock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry[1] <= self._clock():
            del self._entries[key]
            return False
        return True

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if not self._live(key):
                return None
            return self._entries[key][0]

    async def put(self, key: str, value: Any, ttl: float) -> None:
        async with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    async def forget(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def add(self, key: str, value: Any, ttl: float) -> bool:
        async with self._lock:
            if self._live(key):
                return False
            self._entries[key] = (value, self._clock() + ttl)
            return True


class PostgresCache(ICacheStore):
    """Cache entries stored in the hillstone_cache table.

    Values are stored as JSONB, so anything json.dumps accepts round-trips.
    """

    def __init__(self, db_pool: "asyncpg.Pool"):
        self.db_pool = db_pool

    async def get(self, key: str) -> Optional[Any]:
        async with database_connection(self.db_pool) as conn:
            raw = await conn.fetchval(
                """
                SELECT value FROM hillstone_cache
                WHERE key = $1 AND expires_at > NOW()
                """,
                key,
            )
        if raw is None:
            return None
        return json.loads(raw) if isinstance(raw, str) else raw

    async def put(self, key: str, value: Any, ttl: float) -> None:
        async with database_connection(self.db_pool) as conn:
            await conn.execute(
                """
                INSERT INTO hillstone_cache (key, value, expires_at)
                VALUES ($1, $2::jsonb, NOW() + make_interval(secs => $3))
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    expires_at = EXCLUDED.expires_at
                """,
                key,
                json.dumps(value),
                float(ttl),
            )

    async def forget(self, key: str) -> None:
        async with database_connection(self.db_pool) as conn:
            await conn.execute("DELETE FROM hillstone_cache WHERE key = $1", key)

    async def add(self, key: str, value: Any, ttl: float) -> bool:
        # The conditional upsert only overwrites an expired row, so exactly one
        # concurrent caller gets a row back.
        async with database_connection(self.db_pool) as conn:
            stored = await conn.fetchval(
                """
                INSERT INTO hillstone_cache (key, value, expires_at)
                VALUES ($1, $2::jsonb, NOW() + make_interval(secs => $3))
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    expires_at = EXCLUDED.expires_at
                WHERE hillstone_cache.expires_at <= NOW()
                RETURNING key
                """,
                key,
                json.dumps(value),
                float(ttl),
            )
        return stored is not None


class AdvisoryLock:
    """A named cache flag with a TTL.

    The flag records an owner token. A caller presenting the same owner
    re-enters the lock, which lets a retried job keep the lock it took on
    its first attempt.

    Example:
        lock = AdvisoryLock(cache, "hillstone-sync-all-objects", ttl=3600)
        if not await lock.acquire():
            return None
        try:
            ...
        finally:
            await lock.release()
    """

    def __init__(self, cache: ICacheStore, key: str, ttl: float, owner: Optional[str] = None):
        self.cache = cache
        self.key = key
        self.ttl = ttl
        self.owner = owner or uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        value = {"owner": self.owner, "acquired_at": time.time()}
        self.held = await self.cache.add(self.key, value, self.ttl)
        if not self.held:
            current = await self.cache.get(self.key)
            if isinstance(current, dict) and current.get("owner") == self.owner:
                self.held = True
                logger.debug(f"Lock {self.key} re-entered by its owner")
            else:
                logger.info(f"Lock {self.key} is already held")
        return self.held

    async def release(self) -> bool:
        """Drop the flag if this owner still holds it.

        Returns False when the flag expired and another owner has taken it,
        in which case that owner's flag is left alone.
        """
        self.held = False
        current = await self.cache.get(self.key)
        if isinstance(current, dict) and current.get("owner") != self.owner:
            logger.warning(f"Lock {self.key} is now held by another owner, not releasing")
            return False
        await self.cache.forget(self.key)
        return True

    async def is_locked(self) -> bool:
        return await self.cache.get(self.key) is not None
