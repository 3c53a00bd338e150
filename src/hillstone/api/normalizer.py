"""Normalization of firewall address-book payloads.

Different firmware versions wrap the same data differently. Everything the
client returns passes through here so the rest of the code sees a single
shape:

    {
        "name": str,
        "member": [{"name", "type", "value", "description"?}, ...],
        "is_ipv6": bool,
        "predefined": bool,
        "description": str,
        "type": str,
        "last_modified": datetime | None,
        "object_data": {"ip": [...], "is_ipv6": bool, "predefined": bool} | None,
        "raw_data": dict,
    }
"""
import ipaddress
import logging
import re
from datetime import UTC, datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Detection order matters: an exact address wins over CIDR, CIDR over range,
# range over hostname. Anything left is a reference to another object.
MEMBER_TYPES = (
    "ipv4",
    "ipv6",
    "ipv4_cidr",
    "ipv6_cidr",
    "ipv4_range",
    "hostname",
    "reference",
)

IPV4_CIDR_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}/\d{1,2}$")
IPV6_CIDR_RE = re.compile(r"^([0-9a-fA-F:]+)/\d{1,3}$")
IPV4_RANGE_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}-(\d{1,3}\.){3}\d{1,3}$")
HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$"
)


def _is_ip(value: str, version: int) -> bool:
    try:
        return ipaddress.ip_address(value).version == version
    except ValueError:
        return False


def detect_member_type(value: str) -> str:
    """Classify a raw member string.

    >>> detect_member_type("10.0.0.1")
    'ipv4'
    >>> detect_member_type("10.0.0.0/24")
    'ipv4_cidr'
    >>> detect_member_type("web-servers")
    'hostname'
    """
    value = (value or "").strip()
    if _is_ip(value, 4):
        return "ipv4"
    if _is_ip(value, 6):
        return "ipv6"
    if IPV4_CIDR_RE.match(value):
        return "ipv4_cidr"
    if IPV6_CIDR_RE.match(value):
        return "ipv6_cidr"
    if IPV4_RANGE_RE.match(value):
        return "ipv4_range"
    if HOSTNAME_RE.match(value):
        return "hostname"
    return "reference"


def normalize_member(member: Any) -> Optional[dict[str, Any]]:
    """Turn a raw member (string or mapping) into {name, type, value, ...}."""
    if isinstance(member, str):
        value = member.strip()
        return {"name": value, "type": detect_member_type(value), "value": value}

    if isinstance(member, dict):
        name = member.get("name") or member.get("value") or ""
        value = member.get("value") or member.get("name") or ""
        normalized = {
            "name": str(name),
            "type": member.get("type") or detect_member_type(str(value)),
            "value": str(value),
        }
        if member.get("description"):
            normalized["description"] = member["description"]
        return normalized

    if member is not None:
        logger.debug(f"Ignoring member of unexpected type {type(member).__name__}")
    return None


def normalize_members(raw: Any) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raw = [raw]
    members = (normalize_member(m) for m in raw)
    return [m for m in members if m is not None]


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable last_modified value: {value!r}")
    return None


def _first(obj: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    return default


def _object_data(obj: dict, is_ipv6: bool, predefined: bool) -> Optional[dict[str, Any]]:
    """Detail payload: an explicit object_data block, else the top-level ip list."""
    data = obj.get("object_data")
    if isinstance(data, dict):
        ips = data.get("ip") or []
        if not isinstance(ips, list):
            ips = [ips]
        return {
            "ip": ips,
            "is_ipv6": bool(data.get("is_ipv6", is_ipv6)),
            "predefined": bool(data.get("predefined", predefined)),
        }

    ips = obj.get("ip")
    if ips is None:
        return None
    if not isinstance(ips, list):
        ips = [ips]
    return {"ip": ips, "is_ipv6": is_ipv6, "predefined": predefined}


def normalize_object(obj: dict[str, Any]) -> dict[str, Any]:
    """Map one raw address-book object onto the uniform shape."""
    is_ipv6 = bool(_first(obj, "is_ipv6", "ipv6", default=False))
    predefined = bool(_first(obj, "predefined", "is_predefined", default=False))
    return {
        "name": str(obj.get("name") or ""),
        "member": normalize_members(_first(obj, "member", "members", default=[])),
        "is_ipv6": is_ipv6,
        "predefined": predefined,
        "description": obj.get("description") or "",
        "type": obj.get("type") or "address",
        "last_modified": _parse_timestamp(obj.get("last_modified")),
        "object_data": _object_data(obj, is_ipv6, predefined),
        "raw_data": obj,
    }


def unwrap_list(payload: Any) -> list[Any]:
    """Pull the object list out of a data/objects/results envelope or a bare list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "objects", "results"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def unwrap_single(payload: Any) -> Optional[dict[str, Any]]:
    """Pull one object out of a data/object envelope or a bare object.

    An envelope key holding nothing usable means there is no object.
    """
    if not isinstance(payload, dict) or not payload:
        return None
    for key in ("data", "object"):
        if key not in payload:
            continue
        value = payload[key]
        if isinstance(value, dict) and value:
            return value
        if not value and "name" not in payload:
            return None
    return payload
