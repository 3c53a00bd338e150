"""Wiring of adapters and use cases for the CLI and the scheduler.

open_services() builds everything a sync needs from Settings and tears it
down again on exit:

    async with open_services(settings) as services:
        run = await services.jobs.run_sync_all()
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .api.auth import SessionManager
from .api.cache import ICacheStore, PostgresCache
from .api.client import HillstoneClient
from .api.database import close_pool, create_pool
from .api.exceptions import ConfigurationError
from .config import Settings
from .sync.adapters.hillstone_api_adapter import HillstoneAddressBookAPI
from .sync.adapters.postgres_object_repo import PostgresObjectRepository
from .sync.adapters.postgres_sync_run_repo import PostgresSyncRunRepository
from .sync.use_cases.health_check import HealthCheckUseCase
from .sync.use_cases.jobs import SyncJobRunner
from .sync.use_cases.reconcile import ReconcileObjectsUseCase

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything one process needs, sharing one pool and one HTTP session."""

    settings: Settings
    pool: object
    cache: ICacheStore
    client: HillstoneClient
    objects: PostgresObjectRepository
    runs: PostgresSyncRunRepository
    reconcile: ReconcileObjectsUseCase
    jobs: SyncJobRunner
    health: HealthCheckUseCase


@asynccontextmanager
async def open_services(settings: Optional[Settings] = None) -> AsyncIterator[Services]:
    """Validate settings, open the pool and client, and assemble the use cases.

    Raises:
        ConfigurationError: Required settings or DATABASE_URL are missing
        ConnectionPoolError: The database cannot be reached
    """
    settings = settings or Settings.from_env()
    settings.validate()
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not set", missing_keys=["DATABASE_URL"])

    pool = await create_pool(settings.database_url)
    try:
        cache = PostgresCache(pool)
        sessions = SessionManager(settings, cache=cache)
        async with HillstoneClient(settings, session_manager=sessions) as client:
            objects = PostgresObjectRepository(pool)
            runs = PostgresSyncRunRepository(pool)
            reconcile = ReconcileObjectsUseCase(
                api=HillstoneAddressBookAPI(client),
                objects=objects,
                runs=runs,
                settings=settings.sync,
            )
            yield Services(
                settings=settings,
                pool=pool,
                cache=cache,
                client=client,
                objects=objects,
                runs=runs,
                reconcile=reconcile,
                jobs=SyncJobRunner(reconcile, objects, runs, cache, settings.sync),
                health=HealthCheckUseCase(settings, pool, objects, runs, cache, client=client),
            )
    finally:
        await close_pool(pool)
