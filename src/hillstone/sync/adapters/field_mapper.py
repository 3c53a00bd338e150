"""Field mapper for address-book objects.

Transforms normalized API payloads into domain entities and prepares the
values that go into hillstone_objects, hillstone_object_data and
hillstone_object_data_ips.
"""

import ipaddress
import logging
from typing import Any

from ...api.exceptions import ValidationFailure
from ...api.normalizer import detect_member_type
from ..domain.entities import AddressBookObject, IPEntry, Member, RemoteDetail, strip_markup

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


class AddressBookMapper:
    """Maps firewall payloads to entities and entities to storage values.

    This class handles:
    - Member typing (keeps a given type, detects one otherwise)
    - Name validation (trimmed, tag-stripped, at most 255 characters)
    - IP entry construction from strings or {ip_addr, ip_address, netmask, flag}
    - Lenient IP sanitization: malformed values are kept with a warning
    """

    def map_to_entity(self, raw: dict[str, Any]) -> AddressBookObject:
        """Transform a normalized API object into an AddressBookObject."""
        members = []
        for member in raw.get("member") or []:
            if isinstance(member, dict):
                value = str(member.get("value") or member.get("name") or "")
                members.append(Member(
                    name=str(member.get("name") or value),
                    type=member.get("type") or detect_member_type(value),
                    value=value,
                    description=member.get("description"),
                ))
            elif isinstance(member, str):
                members.append(Member(name=member, type=detect_member_type(member), value=member))

        detail = None
        object_data = raw.get("object_data")
        if isinstance(object_data, dict):
            ips = object_data.get("ip") or []
            if not isinstance(ips, list):
                ips = [ips]
            detail = RemoteDetail(
                ip=list(ips),
                is_ipv6=bool(object_data.get("is_ipv6", False)),
                predefined=bool(object_data.get("predefined", False)),
            )

        return AddressBookObject(
            name=self.sanitize_string(raw.get("name")),
            members=members,
            is_ipv6=bool(raw.get("is_ipv6", False)),
            predefined=bool(raw.get("predefined", False)),
            description=raw.get("description") or "",
            type=raw.get("type") or "address",
            last_modified=raw.get("last_modified"),
            detail=detail,
            raw_data=raw.get("raw_data") or {},
        )

    # ----------------------------------------
    # Sanitization and validation
    # ----------------------------------------

    @staticmethod
    def sanitize_string(value: Any) -> str:
        """Strip markup and surrounding whitespace."""
        return strip_markup(value)

    def validate_name(self, name: Any) -> str:
        """Return the sanitized name or raise ValidationFailure."""
        cleaned = self.sanitize_string(name)
        if not cleaned:
            raise ValidationFailure("Object name is required", field="name")
        if len(cleaned) > MAX_NAME_LENGTH:
            raise ValidationFailure(
                f"Object name exceeds {MAX_NAME_LENGTH} characters",
                field="name",
                details={"length": len(cleaned)},
            )
        return cleaned

    @staticmethod
    def is_valid_ip(value: str) -> bool:
        """True for an address or an address/prefix."""
        try:
            ipaddress.ip_interface(value)
            return True
        except ValueError:
            return False

    def sanitize_ip_address(self, value: Any) -> str:
        """Trim an IP-like value. Invalid values are kept as-is with a warning."""
        sanitized = "" if value is None else str(value).strip()
        if sanitized and not self.is_valid_ip(sanitized):
            logger.warning(f"Invalid IP address format kept as-is: {sanitized!r}")
        return sanitized

    # ----------------------------------------
    # Storage preparation
    # ----------------------------------------

    def map_ip_entry(self, item: Any) -> IPEntry | None:
        if isinstance(item, dict):
            try:
                flag = int(item.get("flag") or 0)
            except (TypeError, ValueError):
                flag = 0
            return IPEntry(
                ip_addr=self.sanitize_string(item.get("ip_addr")),
                ip_address=self.sanitize_ip_address(item.get("ip_address")),
                netmask=self.sanitize_ip_address(item.get("netmask")),
                flag=flag,
            )

        if isinstance(item, str):
            raw = self.sanitize_string(item)
            return IPEntry(
                ip_addr=raw,
                ip_address=self.sanitize_ip_address(raw),
                netmask=self._netmask_for(raw),
                flag=0,
            )

        logger.warning(f"Skipping IP entry of unexpected type {type(item).__name__}")
        return None

    def map_ip_entries(self, items: list[Any]) -> list[IPEntry]:
        entries = (self.map_ip_entry(item) for item in items or [])
        return [entry for entry in entries if entry is not None]

    @staticmethod
    def _netmask_for(value: str) -> str:
        """Netmask implied by an address or address/prefix, '' if unparseable."""
        try:
            return str(ipaddress.ip_interface(value).netmask)
        except ValueError:
            return ""

    @staticmethod
    def members_to_json(members: list[Member]) -> list[dict[str, Any]]:
        return [member.to_dict() for member in members]
