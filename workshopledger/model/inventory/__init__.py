# model/inventory/__init__.py
from typing import Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine

from ...config import LEDGER_BACKEND
from ...infra.sql import Gated
from ._memory import MemoryInventoryStore
from ._postgres import SqlInventoryStore
from ._redis import RedisInventoryStore
from .ledger import InventoryLedger
from .store import InventoryStore
from .types import (
    InventoryExpansion, InventoryStatus, InventoryTransaction, Tier,
    TierCounts, parse_tier,
)

BACKEND = LEDGER_BACKEND  # 'memory' | 'pg' | 'redis'


# one factory per ledger; model.open_ledgers wires both
def new_store(*, backend: Optional[str] = None,
              engine: Optional[AsyncEngine] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None) -> InventoryStore:
    backend = (backend or BACKEND).lower()
    if backend == "pg":
        if engine is None or gated is None:
            raise RuntimeError(
                "InventoryStore(pg) requires engine=AsyncEngine and gated"
            )
        return SqlInventoryStore(engine=engine, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError("InventoryStore(redis) requires r=redis.Redis")
        return RedisInventoryStore(r=r)
    if backend == "memory":
        return MemoryInventoryStore()
    raise RuntimeError(f"unknown inventory backend: {backend}")


__all__ = [
    "InventoryLedger", "InventoryStore", "new_store", "BACKEND",
    "InventoryStatus", "InventoryTransaction", "InventoryExpansion",
    "Tier", "TierCounts", "parse_tier",
]
