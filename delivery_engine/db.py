"""
Async Postgres store: deliveries (authoritative row per delivery) + driver_bids (UNIQUE per driver)
+ the side tables the dashboards read (profiles, visibility flags, seller blocks, ratings).
Every status change is a single UPDATE ... WHERE <expected columns> RETURNING *; zero rows returned
means the compare-and-swap lost and nothing was written.
"""
import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import asyncpg
from asyncpg.exceptions import InterfaceError, PostgresError, UniqueViolationError

from delivery_engine.config import settings
from delivery_engine.delivery_state import DeliveryStatus
from delivery_engine.errors import DuplicateBid, DuplicateRating, PersistenceError
from delivery_engine.models import Bid, Delivery, DriverProfile, Rating, Role, SellerProfile
from delivery_engine.store import DELIVERY_COLUMNS, DeliveryStore, check_columns

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

# Storage failures. UniqueViolationError is re-raised first so call sites can map it to a duplicate
_UNAVAILABLE = (OSError, asyncio.TimeoutError, PostgresError, InterfaceError)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        try:
            _pool = await asyncpg.create_pool(
                settings.database_url,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                command_timeout=settings.db_command_timeout,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.exception("Could not connect to %s", settings.database_url)
            raise PersistenceError(str(e)) from e
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS deliveries (
                id VARCHAR(64) PRIMARY KEY,
                seller_id VARCHAR(64) NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'OPEN',
                chosen_driver_id VARCHAR(64),
                pickup_district TEXT,
                pickup_subdistrict TEXT,
                dropoff_district TEXT,
                dropoff_subdistrict TEXT,
                from_address TEXT,
                to_address TEXT,
                pickup_lat DOUBLE PRECISION,
                pickup_lng DOUBLE PRECISION,
                dropoff_lat DOUBLE PRECISION,
                dropoff_lng DOUBLE PRECISION,
                pickup_phone VARCHAR(32),
                dropoff_phone VARCHAR(32),
                price INT,
                note TEXT,
                delivery_type VARCHAR(50),
                seller_marked_paid BOOLEAN NOT NULL DEFAULT FALSE,
                driver_confirmed_payment BOOLEAN NOT NULL DEFAULT FALSE,
                dispute_reason TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                on_route_at TIMESTAMPTZ,
                closed_at TIMESTAMPTZ,
                dispute_opened_at TIMESTAMPTZ,
                CHECK (status = 'RETURNED' OR (chosen_driver_id IS NULL) = (status IN ('OPEN', 'CANCELLED')))
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_seller_id ON deliveries(seller_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_status ON deliveries(status);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS driver_bids (
                id VARCHAR(64) PRIMARY KEY,
                delivery_id VARCHAR(64) NOT NULL REFERENCES deliveries(id),
                driver_id VARCHAR(64) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                UNIQUE(delivery_id, driver_id)
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS driver_profiles (
                id VARCHAR(64) PRIMARY KEY,
                name TEXT,
                phone VARCHAR(32),
                avatar_url TEXT
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS seller_profiles (
                id VARCHAR(64) PRIMARY KEY,
                name TEXT,
                phone VARCHAR(32)
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS delivery_visibility (
                delivery_id VARCHAR(64) NOT NULL REFERENCES deliveries(id),
                role VARCHAR(10) NOT NULL,
                hidden BOOLEAN NOT NULL DEFAULT TRUE,
                PRIMARY KEY (delivery_id, role)
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS seller_blocked_drivers (
                seller_id VARCHAR(64) NOT NULL,
                driver_id VARCHAR(64) NOT NULL,
                reason TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (seller_id, driver_id)
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ratings (
                delivery_id VARCHAR(64) PRIMARY KEY REFERENCES deliveries(id),
                driver_id VARCHAR(64) NOT NULL,
                stars SMALLINT NOT NULL CHECK (stars BETWEEN 1 AND 5),
                comment TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, DeliveryStatus) else value


def build_conditional_update(
    delivery_id: str,
    expect: Mapping[str, Any],
    changes: Mapping[str, Any],
) -> tuple[str, list[Any]]:
    """
    UPDATE deliveries SET <changes> WHERE id = $1 AND <expect> RETURNING *.
    Column names come from the Delivery model only (check_columns), values are always bound.
    """
    check_columns(expect, changes)
    args: list[Any] = [delivery_id]

    def bind(value: Any) -> str:
        args.append(_db_value(value))
        return f"${len(args)}"

    assignments = [f"{column} = {bind(value)}" for column, value in changes.items()]
    conditions = ["id = $1"]
    for column, expected in expect.items():
        if expected is None:
            conditions.append(f"{column} IS NULL")
        elif isinstance(expected, (set, frozenset, tuple)):
            values = sorted(_db_value(v) for v in expected)
            conditions.append(f"{column} = ANY({bind(values)})")
        else:
            conditions.append(f"{column} = {bind(expected)}")
    sql = (
        f"UPDATE deliveries SET {', '.join(assignments)} "
        f"WHERE {' AND '.join(conditions)} RETURNING *;"
    )
    return sql, args


def _delivery(row: asyncpg.Record) -> Delivery:
    return Delivery(**dict(row))


def _bid(row: asyncpg.Record) -> Bid:
    return Bid(**dict(row))


class PostgresStore(DeliveryStore):

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def _fetch(self, sql: str, *args: Any) -> list[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(sql, *args)
        except UniqueViolationError:
            raise
        except _UNAVAILABLE as e:
            logger.exception("Query failed: %s", sql.split()[0])
            raise PersistenceError(str(e)) from e

    async def _fetchrow(self, sql: str, *args: Any) -> asyncpg.Record | None:
        rows = await self._fetch(sql, *args)
        return rows[0] if rows else None

    async def _execute(self, sql: str, *args: Any) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(sql, *args)
        except UniqueViolationError:
            raise
        except _UNAVAILABLE as e:
            logger.exception("Statement failed: %s", sql.split()[0])
            raise PersistenceError(str(e)) from e

    async def insert_delivery(self, delivery: Delivery) -> Delivery:
        values = delivery.model_dump()
        columns = ", ".join(DELIVERY_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(DELIVERY_COLUMNS) + 1))
        row = await self._fetchrow(
            f"INSERT INTO deliveries ({columns}) VALUES ({placeholders}) RETURNING *;",
            *(_db_value(values[c]) for c in DELIVERY_COLUMNS),
        )
        return _delivery(row)

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        row = await self._fetchrow("SELECT * FROM deliveries WHERE id = $1;", delivery_id)
        return _delivery(row) if row else None

    async def list_deliveries(
        self,
        *,
        seller_id: str | None = None,
        chosen_driver_id: str | None = None,
        statuses: Iterable[DeliveryStatus] | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[Delivery]:
        conditions: list[str] = []
        args: list[Any] = []
        if seller_id is not None:
            args.append(seller_id)
            conditions.append(f"seller_id = ${len(args)}")
        if chosen_driver_id is not None:
            args.append(chosen_driver_id)
            conditions.append(f"chosen_driver_id = ${len(args)}")
        if statuses is not None:
            args.append([_db_value(s) for s in statuses])
            conditions.append(f"status = ANY(${len(args)})")
        if ids is not None:
            args.append(list(ids))
            conditions.append(f"id = ANY(${len(args)})")
        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        rows = await self._fetch(f"SELECT * FROM deliveries {where}ORDER BY created_at DESC;", *args)
        return [_delivery(r) for r in rows]

    async def update_delivery(
        self,
        delivery_id: str,
        expect: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Delivery | None:
        sql, args = build_conditional_update(delivery_id, expect, changes)
        row = await self._fetchrow(sql, *args)
        return _delivery(row) if row else None

    async def release_and_block(
        self,
        delivery_id: str,
        expect: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        seller_id: str,
        driver_id: str,
        reason: str | None = None,
    ) -> Delivery | None:
        sql, args = build_conditional_update(delivery_id, expect, changes)
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(sql, *args)
                    if row is not None:
                        await conn.execute(
                            """
                            INSERT INTO seller_blocked_drivers (seller_id, driver_id, reason)
                            VALUES ($1, $2, $3)
                            ON CONFLICT (seller_id, driver_id) DO NOTHING;
                            """,
                            seller_id,
                            driver_id,
                            reason,
                        )
        except _UNAVAILABLE as e:
            logger.exception("Release failed delivery_id=%s", delivery_id)
            raise PersistenceError(str(e)) from e
        return _delivery(row) if row else None

    async def insert_bid(self, bid: Bid) -> Bid | None:
        try:
            row = await self._fetchrow(
                """
                INSERT INTO driver_bids (id, delivery_id, driver_id, created_at)
                SELECT $1, d.id, $3, $4 FROM deliveries d
                WHERE d.id = $2 AND d.status = 'OPEN'
                RETURNING *;
                """,
                bid.id,
                bid.delivery_id,
                bid.driver_id,
                bid.created_at,
            )
        except UniqueViolationError:
            raise DuplicateBid(delivery_id=bid.delivery_id, driver_id=bid.driver_id)
        return _bid(row) if row else None

    async def delete_bid(self, delivery_id: str, driver_id: str) -> bool:
        status = await self._execute(
            """
            DELETE FROM driver_bids b USING deliveries d
            WHERE b.delivery_id = d.id AND d.status = 'OPEN'
              AND b.delivery_id = $1 AND b.driver_id = $2;
            """,
            delivery_id,
            driver_id,
        )
        return status.endswith(" 1")

    async def get_bid(self, delivery_id: str, driver_id: str) -> Bid | None:
        row = await self._fetchrow(
            "SELECT * FROM driver_bids WHERE delivery_id = $1 AND driver_id = $2;",
            delivery_id,
            driver_id,
        )
        return _bid(row) if row else None

    async def list_bids(self, delivery_id: str) -> list[Bid]:
        rows = await self._fetch(
            "SELECT * FROM driver_bids WHERE delivery_id = $1 ORDER BY created_at DESC;",
            delivery_id,
        )
        return [_bid(r) for r in rows]

    async def list_bids_by_driver(self, driver_id: str) -> list[Bid]:
        rows = await self._fetch(
            "SELECT * FROM driver_bids WHERE driver_id = $1 ORDER BY created_at DESC;",
            driver_id,
        )
        return [_bid(r) for r in rows]

    async def count_bids(self, delivery_ids: Iterable[str]) -> dict[str, int]:
        ids = list(delivery_ids)
        counts = {i: 0 for i in ids}
        rows = await self._fetch(
            """
            SELECT delivery_id, COUNT(*) AS n FROM driver_bids
            WHERE delivery_id = ANY($1) GROUP BY delivery_id;
            """,
            ids,
        )
        counts.update({r["delivery_id"]: r["n"] for r in rows})
        return counts

    async def save_driver_profile(self, profile: DriverProfile) -> None:
        await self._execute(
            """
            INSERT INTO driver_profiles (id, name, phone, avatar_url) VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET name = $2, phone = $3, avatar_url = $4;
            """,
            profile.id,
            profile.name,
            profile.phone,
            profile.avatar_url,
        )

    async def save_seller_profile(self, profile: SellerProfile) -> None:
        await self._execute(
            """
            INSERT INTO seller_profiles (id, name, phone) VALUES ($1, $2, $3)
            ON CONFLICT (id) DO UPDATE SET name = $2, phone = $3;
            """,
            profile.id,
            profile.name,
            profile.phone,
        )

    async def get_driver_profiles(self, driver_ids: Iterable[str]) -> dict[str, DriverProfile]:
        rows = await self._fetch("SELECT * FROM driver_profiles WHERE id = ANY($1);", list(driver_ids))
        return {r["id"]: DriverProfile(**dict(r)) for r in rows}

    async def get_seller_profile(self, seller_id: str) -> SellerProfile | None:
        row = await self._fetchrow("SELECT * FROM seller_profiles WHERE id = $1;", seller_id)
        return SellerProfile(**dict(row)) if row else None

    async def set_hidden(self, delivery_id: str, role: Role, hidden: bool = True) -> None:
        await self._execute(
            """
            INSERT INTO delivery_visibility (delivery_id, role, hidden) VALUES ($1, $2, $3)
            ON CONFLICT (delivery_id, role) DO UPDATE SET hidden = $3;
            """,
            delivery_id,
            role.value,
            hidden,
        )

    async def hidden_ids(self, role: Role, delivery_ids: Iterable[str]) -> set[str]:
        rows = await self._fetch(
            """
            SELECT delivery_id FROM delivery_visibility
            WHERE role = $1 AND hidden AND delivery_id = ANY($2);
            """,
            role.value,
            list(delivery_ids),
        )
        return {r["delivery_id"] for r in rows}

    async def block_driver(self, seller_id: str, driver_id: str, reason: str | None = None) -> None:
        await self._execute(
            """
            INSERT INTO seller_blocked_drivers (seller_id, driver_id, reason) VALUES ($1, $2, $3)
            ON CONFLICT (seller_id, driver_id) DO NOTHING;
            """,
            seller_id,
            driver_id,
            reason,
        )

    async def is_blocked(self, seller_id: str, driver_id: str) -> bool:
        row = await self._fetchrow(
            "SELECT 1 FROM seller_blocked_drivers WHERE seller_id = $1 AND driver_id = $2;",
            seller_id,
            driver_id,
        )
        return row is not None

    async def blocked_drivers(self, seller_id: str) -> set[str]:
        rows = await self._fetch(
            "SELECT driver_id FROM seller_blocked_drivers WHERE seller_id = $1;", seller_id
        )
        return {r["driver_id"] for r in rows}

    async def sellers_blocking(self, driver_id: str) -> set[str]:
        rows = await self._fetch(
            "SELECT seller_id FROM seller_blocked_drivers WHERE driver_id = $1;", driver_id
        )
        return {r["seller_id"] for r in rows}

    async def insert_rating(self, rating: Rating) -> Rating:
        try:
            await self._execute(
                """
                INSERT INTO ratings (delivery_id, driver_id, stars, comment, created_at)
                VALUES ($1, $2, $3, $4, $5);
                """,
                rating.delivery_id,
                rating.driver_id,
                rating.stars,
                rating.comment,
                rating.created_at,
            )
        except UniqueViolationError:
            raise DuplicateRating(delivery_id=rating.delivery_id)
        return rating
