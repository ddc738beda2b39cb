# model/inventory/_redis.py
"""
Redis inventory backend.

One hash per city holds limits and sold counts for both tiers; every
mutation is a Lua script so the limit check, the write and the audit
append run as one unit on the server.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from ...errors import StoreError
from .store import InventoryStore
from .types import (
    CityInventory, InventoryExpansion, InventoryTransaction, Tier, TierCounts,
)


LUA_ENSURE = """
-- KEYS[1] city hash, KEYS[2] city index
-- ARGV city_id, ga_public, ga_actual, vip_public, vip_actual, now
if redis.call('EXISTS', KEYS[1]) == 1 then return 0 end
redis.call('HSET', KEYS[1],
    'ga:public', ARGV[2], 'ga:actual', ARGV[3], 'ga:sold', 0,
    'vip:public', ARGV[4], 'vip:actual', ARGV[5], 'vip:sold', 0,
    'updated_at', ARGV[6])
redis.call('SADD', KEYS[2], ARGV[1])
return 1
"""

LUA_DECREMENT = """
-- KEYS[1] city hash, KEYS[2] city txn log, KEYS[3] txn log
-- ARGV tier, qty, now, txn_json
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local sold = tonumber(redis.call('HGET', KEYS[1], ARGV[1] .. ':sold'))
local actual = tonumber(redis.call('HGET', KEYS[1], ARGV[1] .. ':actual'))
if sold + tonumber(ARGV[2]) > actual then return 0 end
redis.call('HINCRBY', KEYS[1], ARGV[1] .. ':sold', ARGV[2])
redis.call('HSET', KEYS[1], 'updated_at', ARGV[3])
redis.call('LPUSH', KEYS[2], ARGV[4])
redis.call('LPUSH', KEYS[3], ARGV[4])
return 1
"""

LUA_EXPAND = """
-- KEYS[1] city hash, KEYS[2] city txn log, KEYS[3] txn log,
-- KEYS[4] city expansion log, KEYS[5] expansion log
-- ARGV tier, additional, now, txn_json, expansion_json
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
redis.call('HINCRBY', KEYS[1], ARGV[1] .. ':actual', ARGV[2])
redis.call('HSET', KEYS[1], 'updated_at', ARGV[3])
redis.call('LPUSH', KEYS[2], ARGV[4])
redis.call('LPUSH', KEYS[3], ARGV[4])
redis.call('LPUSH', KEYS[4], ARGV[5])
redis.call('LPUSH', KEYS[5], ARGV[5])
return 1
"""

LUA_RAISE_PUBLIC = """
-- KEYS[1] city hash, KEYS[2] city txn log, KEYS[3] txn log
-- ARGV tier, additional, now, txn_json
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local pub = tonumber(redis.call('HGET', KEYS[1], ARGV[1] .. ':public'))
local actual = tonumber(redis.call('HGET', KEYS[1], ARGV[1] .. ':actual'))
if pub + tonumber(ARGV[2]) > actual then return 0 end
redis.call('HINCRBY', KEYS[1], ARGV[1] .. ':public', ARGV[2])
redis.call('HSET', KEYS[1], 'updated_at', ARGV[3])
redis.call('LPUSH', KEYS[2], ARGV[4])
redis.call('LPUSH', KEYS[3], ARGV[4])
return 1
"""

LUA_RESET = """
-- KEYS[1] city hash, KEYS[2] city txn log, KEYS[3] txn log
-- ARGV now, ga_txn_json, vip_txn_json
-- each txn_json carries the quoted sold marker where the cleared count goes
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local tiers = {ga = ARGV[2], vip = ARGV[3]}
for _, tier in ipairs({'ga', 'vip'}) do
    local cleared = redis.call('HGET', KEYS[1], tier .. ':sold')
    local encoded = string.gsub(tiers[tier], '"@sold@"', cleared)
    redis.call('LPUSH', KEYS[2], encoded)
    redis.call('LPUSH', KEYS[3], encoded)
end
redis.call('HSET', KEYS[1], 'ga:sold', 0, 'vip:sold', 0, 'updated_at', ARGV[1])
return 1
"""

# stands in for the sold count until the reset script reads it
SOLD_MARK = "@sold@"


def _txn_json(txn: InventoryTransaction, *, sold_mark: bool = False) -> str:
    metadata = txn.metadata
    if sold_mark:
        metadata = {**metadata, "previous_sold": SOLD_MARK}
    return orjson.dumps({
        "id": txn.id,
        "city_id": txn.city_id,
        "tier": txn.tier.value,
        "quantity": SOLD_MARK if sold_mark else txn.quantity,
        "operation": txn.operation,
        "timestamp": txn.timestamp,
        "metadata": metadata,
    }).decode()


def _expansion_json(e: InventoryExpansion) -> str:
    return orjson.dumps({
        "id": e.id,
        "city_id": e.city_id,
        "tier": e.tier.value,
        "additional_spots": e.additional_spots,
        "reason": e.reason,
        "authorized_by": e.authorized_by,
        "timestamp": e.timestamp,
    }).decode()


def _city_from_hash(city_id: str, h: Dict[str, str]) -> CityInventory:
    def counts(kind: str) -> TierCounts:
        return TierCounts(
            ga=int(h.get(f"ga:{kind}", 0)),
            vip=int(h.get(f"vip:{kind}", 0)),
        )
    return CityInventory(
        city_id=city_id,
        public_limits=counts("public"),
        actual_limits=counts("actual"),
        sold=counts("sold"),
        updated_at=float(h.get("updated_at", 0.0)),
    )


class RedisInventoryStore(InventoryStore):
    def __init__(self, *, r: redis.Redis, prefix: str = "wl:") -> None:
        self.r = r
        self.prefix = prefix
        self._ensure = r.register_script(LUA_ENSURE)
        self._decrement = r.register_script(LUA_DECREMENT)
        self._expand = r.register_script(LUA_EXPAND)
        self._raise_public = r.register_script(LUA_RAISE_PUBLIC)
        self._reset = r.register_script(LUA_RESET)

    # ---- keys
    def k_city(self, city_id: str) -> str:
        return f"{self.prefix}inv:city:{city_id}"

    def k_cities(self) -> str:
        return f"{self.prefix}inv:cities"

    def k_txns(self, city_id: Optional[str] = None) -> str:
        if city_id is None:
            return f"{self.prefix}inv:txns"
        return f"{self.prefix}inv:txns:{city_id}"

    def k_exps(self, city_id: Optional[str] = None) -> str:
        if city_id is None:
            return f"{self.prefix}inv:exps"
        return f"{self.prefix}inv:exps:{city_id}"

    @asynccontextmanager
    async def _guard(self):
        try:
            yield
        except RedisError as e:
            raise StoreError(
                f"inventory store failure: {e.__class__.__name__}"
            ) from e

    async def ensure_city(
        self, city_id: str, public_limits: TierCounts,
        actual_limits: TierCounts, now: float,
    ) -> bool:
        async with self._guard():
            created = await self._ensure(
                keys=[self.k_city(city_id), self.k_cities()],
                args=[
                    city_id,
                    public_limits.ga, actual_limits.ga,
                    public_limits.vip, actual_limits.vip,
                    now,
                ],
            )
        return int(created) == 1

    async def get_city(self, city_id: str) -> Optional[CityInventory]:
        async with self._guard():
            h = await self.r.hgetall(self.k_city(city_id))
        return _city_from_hash(city_id, h) if h else None

    async def list_cities(self) -> List[CityInventory]:
        async with self._guard():
            city_ids = sorted(await self.r.smembers(self.k_cities()))
            pipe = self.r.pipeline()
            for city_id in city_ids:
                pipe.hgetall(self.k_city(city_id))
            rows = await pipe.execute()
        return [
            _city_from_hash(city_id, h)
            for city_id, h in zip(city_ids, rows)
            if h
        ]

    async def try_decrement(
        self, city_id: str, tier: Tier, quantity: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        async with self._guard():
            rc = int(await self._decrement(
                keys=[
                    self.k_city(city_id), self.k_txns(city_id), self.k_txns()
                ],
                args=[tier.value, quantity, txn.timestamp, _txn_json(txn)],
            ))
        if rc == -1:
            return False, None
        return rc == 1, await self.get_city(city_id)

    async def expand_actual(
        self, city_id: str, tier: Tier, additional: int,
        expansion: InventoryExpansion, txn: InventoryTransaction,
    ) -> Optional[CityInventory]:
        async with self._guard():
            rc = int(await self._expand(
                keys=[
                    self.k_city(city_id), self.k_txns(city_id), self.k_txns(),
                    self.k_exps(city_id), self.k_exps(),
                ],
                args=[
                    tier.value, additional, txn.timestamp,
                    _txn_json(txn), _expansion_json(expansion),
                ],
            ))
        if rc == -1:
            return None
        return await self.get_city(city_id)

    async def raise_public(
        self, city_id: str, tier: Tier, additional: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        async with self._guard():
            rc = int(await self._raise_public(
                keys=[
                    self.k_city(city_id), self.k_txns(city_id), self.k_txns()
                ],
                args=[tier.value, additional, txn.timestamp, _txn_json(txn)],
            ))
        if rc == -1:
            return False, None
        return rc == 1, await self.get_city(city_id)

    async def reset_sold(
        self, city_id: str, txns: List[InventoryTransaction],
    ) -> Optional[CityInventory]:
        by_tier = {t.tier: t for t in txns}
        async with self._guard():
            rc = int(await self._reset(
                keys=[
                    self.k_city(city_id), self.k_txns(city_id), self.k_txns()
                ],
                args=[
                    txns[0].timestamp,
                    _txn_json(by_tier[Tier.GA], sold_mark=True),
                    _txn_json(by_tier[Tier.VIP], sold_mark=True),
                ],
            ))
        if rc == -1:
            return None
        return await self.get_city(city_id)

    async def list_transactions(
        self, city_id: Optional[str] = None, limit: Optional[int] = None,
    ) -> List[InventoryTransaction]:
        end = -1 if limit is None else max(0, limit - 1)
        if limit == 0:
            return []
        async with self._guard():
            raw = await self.r.lrange(self.k_txns(city_id), 0, end)
        out = []
        for item in raw:
            d = orjson.loads(item)
            out.append(InventoryTransaction(
                id=d["id"],
                city_id=d["city_id"],
                tier=Tier(d["tier"]),
                quantity=int(d["quantity"]),
                operation=d["operation"],
                timestamp=float(d["timestamp"]),
                metadata=d.get("metadata") or {},
            ))
        return out

    async def list_expansions(
        self, city_id: Optional[str] = None,
    ) -> List[InventoryExpansion]:
        async with self._guard():
            raw = await self.r.lrange(self.k_exps(city_id), 0, -1)
        out = []
        for item in raw:
            d = orjson.loads(item)
            out.append(InventoryExpansion(
                id=d["id"],
                city_id=d["city_id"],
                tier=Tier(d["tier"]),
                additional_spots=int(d["additional_spots"]),
                reason=d["reason"],
                authorized_by=d["authorized_by"],
                timestamp=float(d["timestamp"]),
            ))
        return out
