"""Hillstone API adapter for reading address-book objects.

This adapter implements IAddressBookAPI and wraps HillstoneClient. It is
where the client's None-on-404 and exception conventions are folded into a
single tagged result for single-object lookups.
"""

import logging
from typing import TYPE_CHECKING

from ...api.exceptions import HillstoneError
from ..domain.entities import AddressBookObject, Found, LookupFailed, LookupResult, NotFound
from ..domain.ports import IAddressBookAPI
from .field_mapper import AddressBookMapper

if TYPE_CHECKING:
    from ...api.client import HillstoneClient

logger = logging.getLogger(__name__)


class HillstoneAddressBookAPI(IAddressBookAPI):
    """Firewall adapter for address-book reads."""

    def __init__(self, client: "HillstoneClient", mapper: AddressBookMapper | None = None):
        self.client = client
        self.mapper = mapper or AddressBookMapper()

    async def authenticate(self) -> bool:
        return await self.client.authenticate()

    async def list_all(self) -> list[AddressBookObject]:
        raw_objects = await self.client.list_all()
        objects = []
        for raw in raw_objects:
            try:
                objects.append(self.mapper.map_to_entity(raw))
            except Exception as e:
                name = raw.get("name", "unknown") if isinstance(raw, dict) else "unknown"
                logger.warning(f"Mapping error for object {name!r}, skipped: {e}")
        if len(objects) < len(raw_objects):
            logger.warning(f"Skipped {len(raw_objects) - len(objects)} unmappable objects")
        return objects

    async def lookup(self, name: str) -> LookupResult:
        try:
            raw = await self.client.get_by_name(name)
        except HillstoneError as e:
            logger.error(f"Lookup of '{name}' failed: {e}")
            return LookupFailed(name=name, error=e)

        if raw is None:
            return NotFound(name=name)
        return Found(self.mapper.map_to_entity(raw))
