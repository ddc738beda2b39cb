# model/discount/_redis.py
"""
Redis discount usage backend.

- one JSON string per normalized email, written with SET NX
- a sorted set (score = used_at) indexes emails for reporting
- reset deletes, unindexes and appends the audit entry in one script
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import List, Optional

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from ...errors import StoreError
from .store import DiscountUsageStore
from .types import DiscountReset, MemberDiscountUsage, UsageStats


LUA_INSERT = """
-- KEYS[1] usage key, KEYS[2] used_at index
-- ARGV usage_json, used_at, email
if not redis.call('SET', KEYS[1], ARGV[1], 'NX') then return 0 end
redis.call('ZADD', KEYS[2], ARGV[2], ARGV[3])
return 1
"""

LUA_DELETE = """
-- KEYS[1] usage key, KEYS[2] used_at index, KEYS[3] reset log
-- ARGV email, reset_json with the quoted deleted marker as deleted_usage_id
local v = redis.call('GET', KEYS[1])
if not v then return false end
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[1])
local id = cjson.encode(cjson.decode(v)['id'])
local r = string.gsub(ARGV[2], '"@deleted@"', id)
redis.call('LPUSH', KEYS[3], r)
return v
"""

# stands in for the deleted usage id until the delete script knows it
DELETED_MARK = "@deleted@"


class RedisDiscountUsageStore(DiscountUsageStore):
    def __init__(self, *, r: redis.Redis, prefix: str = "wl:") -> None:
        self.r = r
        self.prefix = prefix
        self._insert = r.register_script(LUA_INSERT)
        self._delete = r.register_script(LUA_DELETE)

    # ---- keys
    def k_usage(self, email: str) -> str:
        return f"{self.prefix}disc:usage:{email}"

    def k_index(self) -> str:
        return f"{self.prefix}disc:by_used_at"

    def k_resets(self) -> str:
        return f"{self.prefix}disc:resets"

    @asynccontextmanager
    async def _guard(self):
        try:
            yield
        except RedisError as e:
            raise StoreError(
                f"discount store failure: {e.__class__.__name__}"
            ) from e

    async def get(self, email: str) -> Optional[MemberDiscountUsage]:
        async with self._guard():
            raw = await self.r.get(self.k_usage(email))
        return MemberDiscountUsage.from_record(orjson.loads(raw)) if raw else None

    async def insert_if_absent(self, record: MemberDiscountUsage) -> bool:
        async with self._guard():
            rc = await self._insert(
                keys=[self.k_usage(record.email), self.k_index()],
                args=[
                    orjson.dumps(record.to_record()).decode(),
                    record.used_at,
                    record.email,
                ],
            )
        return int(rc) == 1

    async def delete_usage(
        self, email: str, reset: DiscountReset,
    ) -> Optional[MemberDiscountUsage]:
        async with self._guard():
            raw = await self._delete(
                keys=[self.k_usage(email), self.k_index(), self.k_resets()],
                args=[email, orjson.dumps(
                    replace(reset, deleted_usage_id=DELETED_MARK).to_record()
                ).decode()],
            )
        return MemberDiscountUsage.from_record(orjson.loads(raw)) if raw else None

    async def query(
        self, *, start: Optional[float], end: Optional[float],
        city_id: Optional[str], limit: int, offset: int,
    ) -> UsageStats:
        lo = "-inf" if start is None else start
        hi = "+inf" if end is None else end
        async with self._guard():
            emails = await self.r.zrevrangebyscore(self.k_index(), hi, lo)
            raws = (
                await self.r.mget([self.k_usage(e) for e in emails])
                if emails else []
            )
        records = [
            MemberDiscountUsage.from_record(orjson.loads(raw))
            for raw in raws if raw
        ]
        if city_id is not None:
            records = [r for r in records if r.city_id == city_id]
        records.sort(key=lambda r: (r.used_at, r.id), reverse=True)
        return UsageStats(
            records=records[offset:offset + limit],
            total_count=len(records),
            total_discount_given=sum(r.discount_amount_cents for r in records),
        )

    async def list_resets(self, email: Optional[str] = None) -> List[DiscountReset]:
        async with self._guard():
            raw = await self.r.lrange(self.k_resets(), 0, -1)
        resets = [DiscountReset.from_record(orjson.loads(item)) for item in raw]
        if email is not None:
            resets = [r for r in resets if r.email == email]
        return resets
