# model/__init__.py
"""Open both ledgers on one configured backend."""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine

from ..config import DATABASE_URL, LEDGER_BACKEND, REDIS_URL
from ..infra.sql import make_async_engine
from . import discount, inventory
from .discount import DiscountLedger
from .inventory import InventoryLedger


@dataclass
class Ledgers:
    inventory: InventoryLedger
    discounts: DiscountLedger
    backend: str
    engine: Optional[AsyncEngine] = None
    redis: Optional[redis.Redis] = None

    async def close(self) -> None:
        await self.inventory.store.close()
        await self.discounts.store.close()
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None


async def open_ledgers(
    backend: Optional[str] = None, *,
    database_url: Optional[str] = None,
    redis_url: Optional[str] = None,
) -> Ledgers:
    backend = (backend or LEDGER_BACKEND).lower()
    engine = gated = r = None
    if backend == "pg":
        engine, gated = make_async_engine(database_url or DATABASE_URL)
    elif backend == "redis":
        r = redis.from_url(
            redis_url or REDIS_URL,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "64")),
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )

    inv_store = inventory.new_store(
        backend=backend, engine=engine, gated=gated, r=r,
    )
    disc_store = discount.new_store(
        backend=backend, engine=engine, gated=gated, r=r,
    )
    await inv_store.create_schema()
    await disc_store.create_schema()
    return Ledgers(
        inventory=InventoryLedger(inv_store),
        discounts=DiscountLedger(disc_store),
        backend=backend,
        engine=engine,
        redis=r,
    )


__all__ = ["Ledgers", "open_ledgers", "InventoryLedger", "DiscountLedger"]
