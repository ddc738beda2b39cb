# model/discount/_postgres.py
"""
SQL discount usage backend.

The normalized email is the primary key, so the one-use rule is enforced
by the table itself: INSERT ... ON CONFLICT DO NOTHING RETURNING tells the
caller whether its row landed.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import orjson
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ...errors import StoreError
from ...infra.sql import Gated
from .store import DiscountUsageStore
from .types import DiscountReset, MemberDiscountUsage, UsageStats


SQL_CREATE_USAGE = r"""
CREATE TABLE IF NOT EXISTS member_discount_usage (
    email                  TEXT PRIMARY KEY,  -- normalized
    id                     TEXT NOT NULL UNIQUE,
    customer_id            TEXT,
    session_id             TEXT NOT NULL,
    payment_intent_id      TEXT,
    city_id                TEXT NOT NULL,
    ticket_type            TEXT NOT NULL CHECK (ticket_type IN ('ga','vip')),
    quantity               INTEGER NOT NULL CHECK (quantity > 0),
    discount_amount_cents  INTEGER NOT NULL CHECK (discount_amount_cents >= 0),
    original_amount_cents  INTEGER NOT NULL CHECK (original_amount_cents >= 0),
    final_amount_cents     INTEGER NOT NULL CHECK (final_amount_cents >= 0),
    used_at                DOUBLE PRECISION NOT NULL,
    metadata               TEXT
);
"""

SQL_CREATE_USAGE_IDX = r"""
CREATE INDEX IF NOT EXISTS member_discount_usage_used_at_idx
    ON member_discount_usage(used_at);
"""

SQL_CREATE_RESETS = r"""
-- Append-only; one row per admin reset.
CREATE TABLE IF NOT EXISTS member_discount_resets (
    id                TEXT PRIMARY KEY,
    email             TEXT NOT NULL,
    reason            TEXT NOT NULL,
    authorized_by     TEXT,
    deleted_usage_id  TEXT NOT NULL,
    reset_at          DOUBLE PRECISION NOT NULL
);
"""

SQL_CREATE_RESETS_IDX = r"""
CREATE INDEX IF NOT EXISTS member_discount_resets_email_idx
    ON member_discount_resets(email, reset_at);
"""

USAGE_COLUMNS = """
    id, email, customer_id, session_id, payment_intent_id, city_id,
    ticket_type, quantity, discount_amount_cents, original_amount_cents,
    final_amount_cents, used_at, metadata
"""


async def create_schema(db_or_conn: AsyncConnection) -> None:
    exec_ = db_or_conn.execute
    await exec_(text(SQL_CREATE_USAGE))
    await exec_(text(SQL_CREATE_USAGE_IDX))
    await exec_(text(SQL_CREATE_RESETS))
    await exec_(text(SQL_CREATE_RESETS_IDX))


def _usage_from_row(r) -> MemberDiscountUsage:
    d = dict(r)
    d["metadata"] = orjson.loads(d["metadata"]) if d.get("metadata") else {}
    return MemberDiscountUsage.from_record(d)


def _filters(
    start: Optional[float], end: Optional[float], city_id: Optional[str],
):
    where: List[str] = []
    params: Dict[str, Any] = {}
    if start is not None:
        where.append("used_at >= :start")
        params["start"] = start
    if end is not None:
        where.append("used_at <= :until")
        params["until"] = end
    if city_id is not None:
        where.append("city_id = :c")
        params["c"] = city_id
    clause = (" WHERE " + " AND ".join(where)) if where else ""
    return clause, params


class SqlDiscountUsageStore(DiscountUsageStore):
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
                f"discount store failure: {e.__class__.__name__}"
            ) from e

    async def create_schema(self) -> None:
        async with self._tx() as conn:
            await create_schema(conn)

    async def get(self, email: str) -> Optional[MemberDiscountUsage]:
        async with self._tx() as conn:
            row = (await conn.execute(text(
                f"SELECT {USAGE_COLUMNS} FROM member_discount_usage "
                "WHERE email = :e"
            ), {"e": email})).mappings().first()
        return _usage_from_row(row) if row else None

    async def insert_if_absent(self, record: MemberDiscountUsage) -> bool:
        params = record.to_record()
        params["metadata"] = orjson.dumps(record.metadata).decode()
        async with self._tx() as conn:
            row = (await conn.execute(text(f"""
                INSERT INTO member_discount_usage({USAGE_COLUMNS})
                VALUES (
                    :id, :email, :customer_id, :session_id,
                    :payment_intent_id, :city_id, :ticket_type, :quantity,
                    :discount_amount_cents, :original_amount_cents,
                    :final_amount_cents, :used_at, :metadata)
                ON CONFLICT (email) DO NOTHING
                RETURNING id
            """), params)).first()
        return row is not None

    async def delete_usage(
        self, email: str, reset: DiscountReset,
    ) -> Optional[MemberDiscountUsage]:
        async with self._tx() as conn:
            row = (await conn.execute(text(f"""
                DELETE FROM member_discount_usage WHERE email = :e
                RETURNING {USAGE_COLUMNS}
            """), {"e": email})).mappings().first()
            if row is None:
                return None
            deleted = _usage_from_row(row)
            await conn.execute(text("""
                INSERT INTO member_discount_resets(
                    id, email, reason, authorized_by, deleted_usage_id,
                    reset_at)
                VALUES (:id, :e, :r, :by, :u, :ts)
            """), {
                "id": reset.id, "e": email, "r": reset.reason,
                "by": reset.authorized_by, "u": deleted.id,
                "ts": reset.reset_at,
            })
        return deleted

    async def query(
        self, *, start: Optional[float], end: Optional[float],
        city_id: Optional[str], limit: int, offset: int,
    ) -> UsageStats:
        clause, params = _filters(start, end, city_id)
        async with self._tx() as conn:
            agg = (await conn.execute(text(
                "SELECT COUNT(*) AS n, "
                "COALESCE(SUM(discount_amount_cents), 0) AS total "
                f"FROM member_discount_usage{clause}"
            ), params)).mappings().one()
            rows = (await conn.execute(text(
                f"SELECT {USAGE_COLUMNS} FROM member_discount_usage{clause} "
                "ORDER BY used_at DESC, id DESC LIMIT :lim OFFSET :off"
            ), {**params, "lim": limit, "off": offset})).mappings().all()
        return UsageStats(
            records=[_usage_from_row(r) for r in rows],
            total_count=int(agg["n"]),
            total_discount_given=int(agg["total"]),
        )

    async def list_resets(self, email: Optional[str] = None) -> List[DiscountReset]:
        sql = """
            SELECT id, email, reason, authorized_by, deleted_usage_id,
                   reset_at
            FROM member_discount_resets
        """
        params: Dict[str, Any] = {}
        if email is not None:
            sql += " WHERE email = :e"
            params["e"] = email
        sql += " ORDER BY reset_at DESC, id DESC"
        async with self._tx() as conn:
            rows = (await conn.execute(text(sql), params)).mappings().all()
        return [DiscountReset.from_record(dict(r)) for r in rows]
