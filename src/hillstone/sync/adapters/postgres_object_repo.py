"""PostgreSQL repository adapter for address-book objects.

This adapter implements IObjectRepository. Each object write (object row,
detail row, IP rows) happens in one transaction so a concurrent reader never
sees an object whose detail and IPs disagree.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any

import asyncpg

from ...api.database import database_connection, database_transaction
from ..domain.entities import (
    AddressBookObject,
    IPEntry,
    LocalObject,
    LocalObjectDetail,
    ObjectStatistics,
)
from ..domain.ports import IObjectRepository
from .field_mapper import AddressBookMapper

logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value if value is not None else []


class PostgresObjectRepository(IObjectRepository):
    """PostgreSQL implementation of IObjectRepository.

    - UPSERT (INSERT ON CONFLICT) keyed by name for objects and details
    - Delete-then-executemany replacement of IP rows
    - Stale eviction with a savepoint per row so one failure does not abort the rest
    """

    def __init__(self, pool: asyncpg.Pool, mapper: AddressBookMapper | None = None):
        self.pool = pool
        self.mapper = mapper or AddressBookMapper()

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    async def find_by_name(self, name: str) -> LocalObject | None:
        async with database_connection(self.pool) as conn:
            return await self._load(conn, name)

    async def _load(self, conn, name: str) -> LocalObject | None:
        row = await conn.fetchrow(
            """
            SELECT id, name, member, is_ipv6, predefined, last_synced_at,
                   created_at, updated_at
            FROM hillstone_objects
            WHERE name = $1
            """,
            name,
        )
        if row is None:
            return None

        detail = None
        detail_row = await conn.fetchrow(
            """
            SELECT id, name, ip, is_ipv6, predefined, last_synced_at
            FROM hillstone_object_data
            WHERE name = $1
            """,
            name,
        )
        if detail_row is not None:
            ip_rows = await conn.fetch(
                """
                SELECT ip_addr, ip_address, netmask, flag
                FROM hillstone_object_data_ips
                WHERE hillstone_object_data_id = $1
                ORDER BY id
                """,
                detail_row["id"],
            )
            detail = LocalObjectDetail(
                id=detail_row["id"],
                name=detail_row["name"],
                ip=_json_value(detail_row["ip"]),
                is_ipv6=detail_row["is_ipv6"],
                predefined=detail_row["predefined"],
                last_synced_at=detail_row["last_synced_at"],
                ip_entries=[
                    IPEntry(
                        ip_addr=r["ip_addr"],
                        ip_address=r["ip_address"],
                        netmask=r["netmask"],
                        flag=r["flag"],
                    )
                    for r in ip_rows
                ],
            )

        return LocalObject(
            id=row["id"],
            name=row["name"],
            members=_json_value(row["member"]),
            is_ipv6=row["is_ipv6"],
            predefined=row["predefined"],
            last_synced_at=row["last_synced_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            detail=detail,
        )

    # ----------------------------------------
    # Writes
    # ----------------------------------------

    async def create_or_update(self, obj: AddressBookObject, synced_at: datetime) -> LocalObject:
        name = self.mapper.validate_name(obj.name)
        members = json.dumps(self.mapper.members_to_json(obj.members))

        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                INSERT INTO hillstone_objects (
                    name, member, is_ipv6, predefined, last_synced_at
                ) VALUES ($1, $2::jsonb, $3, $4, $5)
                ON CONFLICT (name) DO UPDATE SET
                    member = EXCLUDED.member,
                    is_ipv6 = EXCLUDED.is_ipv6,
                    predefined = EXCLUDED.predefined,
                    last_synced_at = EXCLUDED.last_synced_at,
                    updated_at = NOW()
                """,
                name,
                members,
                obj.is_ipv6,
                obj.predefined,
                synced_at,
            )

            if obj.detail is not None:
                detail_id = await conn.fetchval(
                    """
                    INSERT INTO hillstone_object_data (
                        name, ip, is_ipv6, predefined, last_synced_at
                    ) VALUES ($1, $2::jsonb, $3, $4, $5)
                    ON CONFLICT (name) DO UPDATE SET
                        ip = EXCLUDED.ip,
                        is_ipv6 = EXCLUDED.is_ipv6,
                        predefined = EXCLUDED.predefined,
                        last_synced_at = EXCLUDED.last_synced_at,
                        updated_at = NOW()
                    RETURNING id
                    """,
                    name,
                    json.dumps(obj.detail.ip),
                    obj.detail.is_ipv6,
                    obj.detail.predefined,
                    synced_at,
                )
                await self._replace_ip_entries(conn, detail_id, obj.detail.ip)

            record = await self._load(conn, name)

        logger.debug(f"Stored address-book object '{name}'")
        return record

    async def _replace_ip_entries(self, conn, detail_id: int, ips: list[Any]) -> None:
        """Delete every IP row of the detail and insert the new set."""
        await conn.execute(
            "DELETE FROM hillstone_object_data_ips WHERE hillstone_object_data_id = $1",
            detail_id,
        )

        entries = self.mapper.map_ip_entries(ips)
        if not entries:
            return

        await conn.executemany(
            """
            INSERT INTO hillstone_object_data_ips (
                hillstone_object_data_id, ip_addr, ip_address, netmask, flag
            ) VALUES ($1, $2, $3, $4, $5)
            """,
            [(detail_id, e.ip_addr, e.ip_address, e.netmask, e.flag) for e in entries],
        )

    async def delete_stale(self, cutoff: datetime) -> int:
        deleted = 0
        async with database_transaction(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT id, name FROM hillstone_objects
                WHERE last_synced_at < $1 OR last_synced_at IS NULL
                ORDER BY id
                """,
                cutoff,
            )

            for row in rows:
                try:
                    async with conn.transaction():
                        result = await conn.execute(
                            "DELETE FROM hillstone_objects WHERE id = $1", row["id"]
                        )
                except asyncpg.PostgresError as e:
                    logger.error(f"Failed to delete stale object '{row['name']}': {e}")
                    continue

                if result.endswith(" 1"):
                    deleted += 1
                    logger.debug(f"Deleted stale object '{row['name']}'")

        logger.info(f"Deleted {deleted} of {len(rows)} stale objects older than {cutoff.isoformat()}")
        return deleted

    async def update_last_synced(self, names: list[str], synced_at: datetime) -> int:
        if not names:
            return 0
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                """
                UPDATE hillstone_objects SET last_synced_at = $2, updated_at = NOW()
                WHERE name = ANY($1::text[])
                """,
                names,
                synced_at,
            )
            await conn.execute(
                """
                UPDATE hillstone_object_data SET last_synced_at = $2, updated_at = NOW()
                WHERE name = ANY($1::text[])
                """,
                names,
                synced_at,
            )
        return int(result.split()[-1])

    # ----------------------------------------
    # Reporting
    # ----------------------------------------

    async def count_stale(self, cutoff: datetime) -> int:
        async with database_connection(self.pool) as conn:
            return await conn.fetchval(
                """
                SELECT COUNT(*) FROM hillstone_objects
                WHERE last_synced_at < $1 OR last_synced_at IS NULL
                """,
                cutoff,
            )

    async def objects_needing_sync(self, older_than: datetime) -> list[str]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT name FROM hillstone_objects
                WHERE last_synced_at < $1 OR last_synced_at IS NULL
                ORDER BY last_synced_at NULLS FIRST, name
                """,
                older_than,
            )
        return [r["name"] for r in rows]

    async def statistics(self, now: datetime) -> ObjectStatistics:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE predefined) AS predefined,
                    COUNT(*) FILTER (WHERE is_ipv6) AS ipv6,
                    COUNT(*) FILTER (WHERE last_synced_at >= $1) AS synced_last_24h,
                    COUNT(*) FILTER (
                        WHERE last_synced_at < $2 OR last_synced_at IS NULL
                    ) AS stale_over_week,
                    MAX(last_synced_at) AS last_synced_at
                FROM hillstone_objects
                """,
                now - timedelta(days=1),
                now - timedelta(weeks=1),
            )
            with_detail = await conn.fetchval("SELECT COUNT(*) FROM hillstone_object_data")

        return ObjectStatistics(
            total=row["total"],
            predefined=row["predefined"],
            user_defined=row["total"] - row["predefined"],
            ipv6=row["ipv6"],
            with_detail=with_detail,
            synced_last_24h=row["synced_last_24h"],
            stale_over_week=row["stale_over_week"],
            last_synced_at=row["last_synced_at"],
        )
