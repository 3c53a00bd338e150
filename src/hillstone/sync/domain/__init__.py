"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Remote objects, local records and the sync run ledger
- Ports: Abstract interfaces the adapters implement

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    AddressBookObject,
    Found,
    IPEntry,
    LocalObject,
    LocalObjectDetail,
    LookupFailed,
    LookupResult,
    Member,
    NotFound,
    ObjectAction,
    ObjectOutcome,
    ObjectStatistics,
    OperationType,
    RemoteDetail,
    SyncCounts,
    SyncRun,
    SyncStatistics,
    SyncStatus,
)
from .ports import IAddressBookAPI, IObjectRepository, ISyncRunRepository

__all__ = [
    # Remote Entities
    "AddressBookObject",
    "Member",
    "RemoteDetail",
    # Local Entities
    "LocalObject",
    "LocalObjectDetail",
    "IPEntry",
    # Ledger Entities
    "OperationType",
    "SyncStatus",
    "SyncRun",
    "SyncCounts",
    "SyncStatistics",
    "ObjectStatistics",
    # Results
    "ObjectAction",
    "ObjectOutcome",
    "Found",
    "NotFound",
    "LookupFailed",
    "LookupResult",
    # Ports
    "IAddressBookAPI",
    "IObjectRepository",
    "ISyncRunRepository",
]
