# model/inventory/_postgres.py
"""
SQL inventory backend (PostgreSQL via asyncpg, SQLite via aiosqlite).

- one row per (city, tier) holding public_limit, actual_limit and sold
- a sale is a single conditional UPDATE: it matches no row when the sale
  would push sold past actual_limit, so concurrent buyers of the last seat
  cannot both win
- every mutation writes its audit rows inside the same transaction
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

import orjson
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ...errors import StoreError
from ...infra.sql import Gated
from .store import InventoryStore
from .types import (
    CityInventory, InventoryExpansion, InventoryTransaction, Tier, TierCounts,
)


# ------------------------------------------------------------------------------
# DDL (idempotent)
# ------------------------------------------------------------------------------

SQL_CREATE_INVENTORY = r"""
-- One row per (city, tier).
--   public_limit : capacity advertised to customers
--   actual_limit : true sellable capacity (public + operator reserve)
--   sold         : tickets sold against actual_limit
CREATE TABLE IF NOT EXISTS inventory (
    city_id       TEXT NOT NULL,
    tier          TEXT NOT NULL CHECK (tier IN ('ga','vip')),
    public_limit  INTEGER NOT NULL CHECK (public_limit >= 0),
    actual_limit  INTEGER NOT NULL,
    sold          INTEGER NOT NULL DEFAULT 0 CHECK (sold >= 0),
    updated_at    DOUBLE PRECISION NOT NULL,
    PRIMARY KEY (city_id, tier),
    CHECK (actual_limit >= public_limit),
    CHECK (sold <= actual_limit)
);
"""

SQL_CREATE_TRANSACTIONS = r"""
-- Append-only audit trail; never read back to rebuild state.
CREATE TABLE IF NOT EXISTS inventory_transactions (
    id          TEXT PRIMARY KEY,
    city_id     TEXT NOT NULL,
    tier        TEXT NOT NULL CHECK (tier IN ('ga','vip')),
    quantity    INTEGER NOT NULL,
    operation   TEXT NOT NULL
                CHECK (operation IN ('decrement','expand','reset')),
    metadata    TEXT,
    created_at  DOUBLE PRECISION NOT NULL
);
"""

SQL_CREATE_TRANSACTIONS_IDX = r"""
CREATE INDEX IF NOT EXISTS inventory_transactions_city_created_idx
    ON inventory_transactions(city_id, created_at);
"""

SQL_CREATE_EXPANSIONS = r"""
CREATE TABLE IF NOT EXISTS inventory_expansions (
    id                TEXT PRIMARY KEY,
    city_id           TEXT NOT NULL,
    tier              TEXT NOT NULL CHECK (tier IN ('ga','vip')),
    additional_spots  INTEGER NOT NULL CHECK (additional_spots > 0),
    reason            TEXT NOT NULL,
    authorized_by     TEXT NOT NULL,
    created_at        DOUBLE PRECISION NOT NULL
);
"""

SQL_CREATE_EXPANSIONS_IDX = r"""
CREATE INDEX IF NOT EXISTS inventory_expansions_city_created_idx
    ON inventory_expansions(city_id, created_at);
"""

SQL_SELECT_CITY = """
    SELECT city_id, tier, public_limit, actual_limit, sold, updated_at
    FROM inventory WHERE city_id = :c
"""

SQL_SELECT_ALL = """
    SELECT city_id, tier, public_limit, actual_limit, sold, updated_at
    FROM inventory ORDER BY city_id
"""

SQL_INSERT_TXN = """
    INSERT INTO inventory_transactions(
        id, city_id, tier, quantity, operation, metadata, created_at)
    VALUES (:id, :c, :t, :q, :op, :m, :ts)
"""


async def create_schema(db_or_conn: AsyncConnection) -> None:
    exec_ = db_or_conn.execute
    await exec_(text(SQL_CREATE_INVENTORY))
    await exec_(text(SQL_CREATE_TRANSACTIONS))
    await exec_(text(SQL_CREATE_TRANSACTIONS_IDX))
    await exec_(text(SQL_CREATE_EXPANSIONS))
    await exec_(text(SQL_CREATE_EXPANSIONS_IDX))


def _cities_from_rows(rows) -> List[CityInventory]:
    by_city: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        d = by_city.setdefault(r["city_id"], {
            "public": {}, "actual": {}, "sold": {}, "updated_at": 0.0,
        })
        tier = r["tier"]
        d["public"][tier] = int(r["public_limit"])
        d["actual"][tier] = int(r["actual_limit"])
        d["sold"][tier] = int(r["sold"])
        d["updated_at"] = max(d["updated_at"], float(r["updated_at"]))
    return [
        CityInventory(
            city_id=city_id,
            public_limits=TierCounts(**d["public"]),
            actual_limits=TierCounts(**d["actual"]),
            sold=TierCounts(**d["sold"]),
            updated_at=d["updated_at"],
        )
        for city_id, d in sorted(by_city.items())
    ]


def _txn_params(txn: InventoryTransaction) -> Dict[str, Any]:
    return {
        "id": txn.id,
        "c": txn.city_id,
        "t": txn.tier.value,
        "q": txn.quantity,
        "op": txn.operation,
        "m": orjson.dumps(txn.metadata).decode(),
        "ts": txn.timestamp,
    }


class SqlInventoryStore(InventoryStore):
    def __init__(self, *, engine: AsyncEngine, gated: Gated) -> None:
        self.engine = engine
        self.gated = gated

    @asynccontextmanager
    async def _tx(self):
        try:
            async with self.gated():
                async with self.engine.begin() as conn:
                    yield conn
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(
                f"inventory store failure: {e.__class__.__name__}"
            ) from e

    async def create_schema(self) -> None:
        async with self._tx() as conn:
            await create_schema(conn)

    async def _select_city(
        self, conn: AsyncConnection, city_id: str
    ) -> Optional[CityInventory]:
        rows = (await conn.execute(
            text(SQL_SELECT_CITY), {"c": city_id}
        )).mappings().all()
        cities = _cities_from_rows(rows)
        return cities[0] if cities else None

    async def ensure_city(
        self, city_id: str, public_limits: TierCounts,
        actual_limits: TierCounts, now: float,
    ) -> bool:
        created = False
        async with self._tx() as conn:
            for tier in (Tier.GA, Tier.VIP):
                row = (await conn.execute(text("""
                    INSERT INTO inventory(
                        city_id, tier, public_limit, actual_limit, sold,
                        updated_at)
                    VALUES (:c, :t, :p, :a, 0, :ts)
                    ON CONFLICT (city_id, tier) DO NOTHING
                    RETURNING city_id
                """), {
                    "c": city_id, "t": tier.value,
                    "p": public_limits.get(tier),
                    "a": actual_limits.get(tier),
                    "ts": now,
                })).first()
                created = created or row is not None
        return created

    async def get_city(self, city_id: str) -> Optional[CityInventory]:
        async with self._tx() as conn:
            return await self._select_city(conn, city_id)

    async def list_cities(self) -> List[CityInventory]:
        # single statement: each city's two rows come from one snapshot
        async with self._tx() as conn:
            rows = (await conn.execute(text(SQL_SELECT_ALL))).mappings().all()
        return _cities_from_rows(rows)

    async def try_decrement(
        self, city_id: str, tier: Tier, quantity: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        async with self._tx() as conn:
            row = (await conn.execute(text("""
                UPDATE inventory
                SET sold = sold + :q, updated_at = :ts
                WHERE city_id = :c
                  AND tier = :t
                  AND sold + :q <= actual_limit
                RETURNING sold
            """), {
                "q": quantity, "ts": txn.timestamp,
                "c": city_id, "t": tier.value,
            })).first()
            if row is not None:
                await conn.execute(text(SQL_INSERT_TXN), _txn_params(txn))
            city = await self._select_city(conn, city_id)
        return row is not None, city

    async def expand_actual(
        self, city_id: str, tier: Tier, additional: int,
        expansion: InventoryExpansion, txn: InventoryTransaction,
    ) -> Optional[CityInventory]:
        async with self._tx() as conn:
            row = (await conn.execute(text("""
                UPDATE inventory
                SET actual_limit = actual_limit + :n, updated_at = :ts
                WHERE city_id = :c AND tier = :t
                RETURNING actual_limit
            """), {
                "n": additional, "ts": txn.timestamp,
                "c": city_id, "t": tier.value,
            })).first()
            if row is None:
                return None
            await conn.execute(text("""
                INSERT INTO inventory_expansions(
                    id, city_id, tier, additional_spots, reason,
                    authorized_by, created_at)
                VALUES (:id, :c, :t, :n, :r, :by, :ts)
            """), {
                "id": expansion.id, "c": city_id, "t": tier.value,
                "n": additional, "r": expansion.reason,
                "by": expansion.authorized_by, "ts": expansion.timestamp,
            })
            await conn.execute(text(SQL_INSERT_TXN), _txn_params(txn))
            return await self._select_city(conn, city_id)

    async def raise_public(
        self, city_id: str, tier: Tier, additional: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        async with self._tx() as conn:
            row = (await conn.execute(text("""
                UPDATE inventory
                SET public_limit = public_limit + :n, updated_at = :ts
                WHERE city_id = :c
                  AND tier = :t
                  AND public_limit + :n <= actual_limit
                RETURNING public_limit
            """), {
                "n": additional, "ts": txn.timestamp,
                "c": city_id, "t": tier.value,
            })).first()
            if row is not None:
                await conn.execute(text(SQL_INSERT_TXN), _txn_params(txn))
            city = await self._select_city(conn, city_id)
        return row is not None, city

    async def reset_sold(
        self, city_id: str, txns: List[InventoryTransaction],
    ) -> Optional[CityInventory]:
        async with self._tx() as conn:
            # take the row locks before reading sold, so no sale can commit
            # between the audited count and the reset
            locked = (await conn.execute(text("""
                UPDATE inventory SET updated_at = :ts
                WHERE city_id = :c
                RETURNING tier
            """), {"ts": txns[0].timestamp, "c": city_id})).all()
            if not locked:
                return None
            before = await self._select_city(conn, city_id)
            await conn.execute(text("""
                UPDATE inventory SET sold = 0
                WHERE city_id = :c
            """), {"c": city_id})
            for t in txns:
                cleared = before.sold.get(t.tier)
                params = _txn_params(t)
                params["q"] = cleared
                params["m"] = orjson.dumps(
                    {**t.metadata, "previous_sold": cleared}
                ).decode()
                await conn.execute(text(SQL_INSERT_TXN), params)
            return await self._select_city(conn, city_id)

    async def list_transactions(
        self, city_id: Optional[str] = None, limit: Optional[int] = None,
    ) -> List[InventoryTransaction]:
        sql = """
            SELECT id, city_id, tier, quantity, operation, metadata,
                   created_at
            FROM inventory_transactions
        """
        params: Dict[str, Any] = {}
        if city_id is not None:
            sql += " WHERE city_id = :c"
            params["c"] = city_id
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT :lim"
            params["lim"] = int(limit)
        async with self._tx() as conn:
            rows = (await conn.execute(text(sql), params)).mappings().all()
        return [
            InventoryTransaction(
                id=r["id"],
                city_id=r["city_id"],
                tier=Tier(r["tier"]),
                quantity=int(r["quantity"]),
                operation=r["operation"],
                timestamp=float(r["created_at"]),
                metadata=orjson.loads(r["metadata"]) if r["metadata"] else {},
            )
            for r in rows
        ]

    async def list_expansions(
        self, city_id: Optional[str] = None,
    ) -> List[InventoryExpansion]:
        sql = """
            SELECT id, city_id, tier, additional_spots, reason,
                   authorized_by, created_at
            FROM inventory_expansions
        """
        params: Dict[str, Any] = {}
        if city_id is not None:
            sql += " WHERE city_id = :c"
            params["c"] = city_id
        sql += " ORDER BY created_at DESC, id DESC"
        async with self._tx() as conn:
            rows = (await conn.execute(text(sql), params)).mappings().all()
        return [
            InventoryExpansion(
                id=r["id"],
                city_id=r["city_id"],
                tier=Tier(r["tier"]),
                additional_spots=int(r["additional_spots"]),
                reason=r["reason"],
                authorized_by=r["authorized_by"],
                timestamp=float(r["created_at"]),
            )
            for r in rows
        ]
