"""Adapters layer - Infrastructure implementations of domain ports.

- HillstoneAddressBookAPI: IAddressBookAPI over HillstoneClient
- PostgresObjectRepository: IObjectRepository over asyncpg
- PostgresSyncRunRepository: ISyncRunRepository over asyncpg
- AddressBookMapper: Normalized payload to domain entity mapping
"""

from .field_mapper import AddressBookMapper
from .hillstone_api_adapter import HillstoneAddressBookAPI
from .postgres_object_repo import PostgresObjectRepository
from .postgres_sync_run_repo import PostgresSyncRunRepository

__all__ = [
    "AddressBookMapper",
    "HillstoneAddressBookAPI",
    "PostgresObjectRepository",
    "PostgresSyncRunRepository",
]
