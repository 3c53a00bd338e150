"""Sync module - reconciliation of firewall address-book objects.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Reconciliation, jobs and health checks
    adapters/   - Infrastructure implementations (PostgreSQL, Hillstone API)
"""

from .domain.entities import (
    AddressBookObject,
    LocalObject,
    OperationType,
    SyncCounts,
    SyncRun,
    SyncStatistics,
    SyncStatus,
)
from .domain.ports import IAddressBookAPI, IObjectRepository, ISyncRunRepository

__all__ = [
    # Entities
    "AddressBookObject",
    "LocalObject",
    "OperationType",
    "SyncCounts",
    "SyncRun",
    "SyncStatistics",
    "SyncStatus",
    # Ports
    "IAddressBookAPI",
    "IObjectRepository",
    "ISyncRunRepository",
]
