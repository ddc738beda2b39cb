# model/discount/__init__.py
from typing import Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine

from ...config import LEDGER_BACKEND
from ...infra.sql import Gated
from ._memory import MemoryDiscountUsageStore
from ._postgres import SqlDiscountUsageStore
from ._redis import RedisDiscountUsageStore
from .ledger import DiscountLedger
from .store import DiscountUsageStore
from .types import (
    DiscountReset, DiscountUsageCheck, Eligibility, MemberDiscountUsage,
    RecordResult, UsageStats,
)

BACKEND = LEDGER_BACKEND


def new_store(*, backend: Optional[str] = None,
              engine: Optional[AsyncEngine] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None) -> DiscountUsageStore:
    backend = (backend or BACKEND).lower()
    if backend == "pg":
        if engine is None or gated is None:
            raise RuntimeError(
                "DiscountUsageStore(pg) requires engine=AsyncEngine and gated"
            )
        return SqlDiscountUsageStore(engine=engine, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError("DiscountUsageStore(redis) requires r=redis.Redis")
        return RedisDiscountUsageStore(r=r)
    if backend == "memory":
        return MemoryDiscountUsageStore()
    raise RuntimeError(f"unknown discount backend: {backend}")


__all__ = [
    "DiscountLedger", "DiscountUsageStore", "new_store", "BACKEND",
    "MemberDiscountUsage", "DiscountReset", "DiscountUsageCheck",
    "Eligibility", "RecordResult", "UsageStats",
]
