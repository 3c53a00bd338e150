"""Health Check Use Case - reports on every dependency of a sync.

Each check returns {"status", "message", "details"} where status is one of
healthy, warning, unhealthy. A check never raises: a failure inside a check
is reported as unhealthy so the remaining checks still run.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ...api.cache import ICacheStore
from ...api.database import check_database_health
from ...config import Settings
from ..domain.entities import SyncStatus, utcnow
from ..domain.ports import IObjectRepository, ISyncRunRepository

if TYPE_CHECKING:
    from ...api.client import HillstoneClient

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
WARNING = "warning"
UNHEALTHY = "unhealthy"

DATA_FRESHNESS_WINDOW = timedelta(days=7)
RECENT_SYNC_HEALTHY = timedelta(days=1)
RECENT_SYNC_WARNING = timedelta(days=7)


def _check(status: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"status": status, "message": message, "details": details or {}}


class HealthCheckUseCase:
    """Runs the health checks used by --health and the scheduler endpoint.

    The client is optional; without one the api and authentication checks
    report a warning instead of probing the firewall.
    """

    def __init__(
        self,
        settings: Settings,
        pool,
        objects: IObjectRepository,
        runs: ISyncRunRepository,
        cache: ICacheStore,
        client: "HillstoneClient | None" = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.pool = pool
        self.objects = objects
        self.runs = runs
        self.cache = cache
        self.client = client
        self._clock = clock
        self._probe: dict[str, Any] | None = None

    async def run(self) -> dict[str, Any]:
        self._probe = None
        checks: dict[str, Callable[[], Awaitable[dict[str, Any]]]] = {
            "database": self.check_database,
            "configuration": self.check_configuration,
            "api_connectivity": self.check_api_connectivity,
            "authentication": self.check_authentication,
            "tables": self.check_tables,
            "cache": self.check_cache,
            "recent_sync": self.check_recent_sync,
        }

        results: dict[str, dict[str, Any]] = {}
        for name, check in checks.items():
            try:
                results[name] = await check()
            except Exception as e:
                logger.exception(f"Health check '{name}' raised")
                results[name] = _check(UNHEALTHY, f"Check failed: {e}")

        return {"checks": results, "summary": self.summarize(results)}

    @staticmethod
    def summarize(results: dict[str, dict[str, Any]]) -> dict[str, Any]:
        statuses = [r["status"] for r in results.values()]
        if UNHEALTHY in statuses:
            overall = UNHEALTHY
        elif WARNING in statuses:
            overall = WARNING
        else:
            overall = HEALTHY
        return {
            "status": overall,
            "healthy": statuses.count(HEALTHY),
            "warning": statuses.count(WARNING),
            "unhealthy": statuses.count(UNHEALTHY),
        }

    # ----------------------------------------
    # Individual checks
    # ----------------------------------------

    async def check_database(self) -> dict[str, Any]:
        health = await check_database_health(self.pool)
        if health.get("healthy"):
            return _check(HEALTHY, "Database connection OK", health)
        return _check(UNHEALTHY, f"Database unavailable: {health.get('error')}", health)

    async def check_configuration(self) -> dict[str, Any]:
        missing = self.settings.missing_keys()
        if missing:
            return _check(UNHEALTHY, f"Missing configuration: {', '.join(missing)}", {"missing": missing})
        return _check(
            HEALTHY,
            "Configuration complete",
            {
                "base_url": self.settings.connection.base_url,
                "domain": self.settings.connection.domain,
                "verify_ssl": self.settings.connection.verify_ssl,
            },
        )

    async def check_api_connectivity(self) -> dict[str, Any]:
        if self.client is None:
            return _check(WARNING, "No API client configured")
        probe = await self.client.test_connection()
        self._probe = probe
        if probe["connectivity"]:
            return _check(
                HEALTHY,
                f"API reachable in {probe['response_time_ms']} ms",
                {
                    "status_code": probe["status_code"],
                    "response_time_ms": probe["response_time_ms"],
                },
            )
        return _check(UNHEALTHY, f"API unreachable: {probe.get('error')}")

    async def check_authentication(self) -> dict[str, Any]:
        if self.client is None:
            return _check(WARNING, "No API client configured")
        probe = self._probe or await self.client.test_connection()
        if probe["authentication"]:
            return _check(HEALTHY, "Authentication succeeded")
        if not probe["connectivity"]:
            return _check(UNHEALTHY, "Authentication skipped, API unreachable")
        return _check(UNHEALTHY, f"Authentication failed: {probe['auth_error']}")

    async def check_tables(self) -> dict[str, Any]:
        now = self._clock()
        stats = await self.objects.statistics(now)
        details = stats.to_dict()
        if stats.total == 0:
            return _check(WARNING, "No objects stored yet", details)
        if stats.last_synced_at is None or now - stats.last_synced_at > DATA_FRESHNESS_WINDOW:
            return _check(WARNING, "Stored objects have not been synced in over 7 days", details)
        return _check(HEALTHY, f"{stats.total} objects stored", details)

    async def check_cache(self) -> dict[str, Any]:
        key = f"{self.settings.cache.prefix}health_check_{uuid.uuid4().hex}"
        value = {"checked_at": self._clock().isoformat()}
        await self.cache.put(key, value, 60)
        read_back = await self.cache.get(key)
        await self.cache.forget(key)
        if read_back == value:
            return _check(HEALTHY, "Cache round-trip OK")
        return _check(UNHEALTHY, "Cache returned a different value than written")

    async def check_recent_sync(self) -> dict[str, Any]:
        last = await self.runs.latest()
        if last is None:
            return _check(WARNING, "No sync has run yet")

        details = last.to_dict()
        if last.status is SyncStatus.FAILED:
            return _check(UNHEALTHY, f"Last sync failed: {last.error_message}", details)

        age = self._clock() - last.started_at
        if age <= RECENT_SYNC_HEALTHY:
            return _check(HEALTHY, f"Last sync {last.status.value} {_hours(age)} hours ago", details)
        if age <= RECENT_SYNC_WARNING:
            return _check(WARNING, f"Last sync was {_hours(age)} hours ago", details)
        return _check(UNHEALTHY, f"No sync in {age.days} days", details)


def _hours(age: timedelta) -> float:
    return round(age.total_seconds() / 3600, 1)
