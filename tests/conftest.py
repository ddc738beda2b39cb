import os

import pytest
import pytest_asyncio

from workshopledger.errors import StoreError
from workshopledger.infra import timings
from workshopledger.infra.sql import make_async_engine
from workshopledger.model.discount import DiscountLedger
from workshopledger.model.discount import new_store as new_discount_store
from workshopledger.model.discount._memory import MemoryDiscountUsageStore
from workshopledger.model.inventory import InventoryLedger
from workshopledger.model.inventory import new_store as new_inventory_store
from workshopledger.model.inventory._memory import MemoryInventoryStore


DALLAS = "dallas-jan-2026"
ATLANTA = "atlanta-feb-2026"
LA = "la-mar-2026"
TEST_CITIES = [DALLAS, ATLANTA, LA]


async def seed(ledger: InventoryLedger, cities=TEST_CITIES):
    for city_id in cities:
        res = await ledger.ensure_city(city_id, 35, 15)
        assert res.success
    return ledger


@pytest.fixture(autouse=True)
def _fresh_timings():
    timings.clear()
    yield
    timings.clear()


# ============================================================================
# Faulty stores
# ============================================================================


class FailingDiscountStore(MemoryDiscountUsageStore):
    """Every read and write fails like a dropped connection."""

    async def get(self, email):
        raise StoreError("discount store failure: ConnectionError")

    async def insert_if_absent(self, record):
        raise StoreError("discount store failure: ConnectionError")


class FailingInventoryStore(MemoryInventoryStore):
    """Reads fail; expansions fail for the cities listed in `broken`."""

    def __init__(self, broken=()):
        super().__init__()
        self.broken = set(broken)

    async def list_cities(self):
        raise StoreError("inventory store failure: ConnectionError")

    async def expand_actual(self, city_id, *args, **kwargs):
        if city_id in self.broken:
            raise StoreError("inventory store failure: ConnectionError")
        return await super().expand_actual(city_id, *args, **kwargs)


# ============================================================================
# Memory backend
# ============================================================================


@pytest_asyncio.fixture
async def inventory():
    return await seed(InventoryLedger(new_inventory_store(backend="memory")))


@pytest.fixture
def discounts():
    return DiscountLedger(new_discount_store(backend="memory"))


# ============================================================================
# SQL backend on a throwaway SQLite file
# ============================================================================


@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    engine, gated = make_async_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    yield engine, gated
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_inventory(sql_engine):
    engine, gated = sql_engine
    store = new_inventory_store(backend="pg", engine=engine, gated=gated)
    await store.create_schema()
    return await seed(InventoryLedger(store))


@pytest_asyncio.fixture
async def sql_discounts(sql_engine):
    engine, gated = sql_engine
    store = new_discount_store(backend="pg", engine=engine, gated=gated)
    await store.create_schema()
    return DiscountLedger(store)


# ============================================================================
# Redis backend, only when a server is configured
# ============================================================================


@pytest_asyncio.fixture
async def redis_client():
    url = os.getenv("REDIS_URL")
    if not url:
        pytest.skip("REDIS_URL not set")
    import redis.asyncio as redis

    r = redis.from_url(url, decode_responses=True)
    prefix = f"wltest:{os.getpid()}:{id(r)}:"
    yield r, prefix
    keys = [k async for k in r.scan_iter(match=f"{prefix}*")]
    if keys:
        await r.delete(*keys)
    await r.aclose()
