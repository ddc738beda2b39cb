"""
Redis backends. Tests that talk to a server are skipped unless REDIS_URL
is set.
"""

import asyncio

import orjson
import pytest

from conftest import seed
from workshopledger.errors import ErrorCode
from workshopledger.model.discount import DiscountLedger
from workshopledger.model.discount._redis import RedisDiscountUsageStore
from workshopledger.model.inventory import InventoryLedger, Tier
from workshopledger.model.inventory._redis import (
    RedisInventoryStore, _txn_json,
)
from workshopledger.model.inventory.types import InventoryTransaction


def order(email, session_id="cs_1", city_id="dallas-jan-2026", cents=1000):
    return dict(
        email=email, session_id=session_id, city_id=city_id,
        ticket_type="ga", quantity=1, discount_amount_cents=cents,
        original_amount_cents=5000, final_amount_cents=5000 - cents,
    )


@pytest.mark.asyncio
class TestRedisInventory:
    async def test_ledger_operations(self, redis_client):
        r, prefix = redis_client
        ledger = await seed(
            InventoryLedger(RedisInventoryStore(r=r, prefix=prefix))
        )

        sold = await ledger.decrement_inventory("dallas-jan-2026", "vip", 14)
        short = await ledger.decrement_inventory("dallas-jan-2026", "vip", 2)
        grown = await ledger.expand_inventory(
            "dallas-jan-2026", "vip", 5, "admin_1"
        )
        reset = await ledger.reset_inventory(
            "dallas-jan-2026", "admin_1", "demo"
        )

        assert sold.available_after == 1
        assert short.code == ErrorCode.INSUFFICIENT_INVENTORY
        assert grown.new_limit == 20
        assert reset.success
        status = await ledger.get_inventory_status("dallas-jan-2026")
        assert status.sold.vip == 0
        assert status.public_limits.vip == 15
        resets = [
            t for t in await ledger.get_inventory_transactions(
                "dallas-jan-2026"
            )
            if t.operation == "reset"
        ]
        assert {t.tier: t.quantity for t in resets} == {
            Tier.GA: 0, Tier.VIP: 14,
        }
        assert all(t.timestamp == status.last_updated for t in resets)

    async def test_concurrent_buyers_never_oversell(self, redis_client):
        r, prefix = redis_client
        ledger = await seed(
            InventoryLedger(RedisInventoryStore(r=r, prefix=prefix))
        )

        results = await asyncio.gather(*[
            ledger.decrement_inventory("la-mar-2026", "vip", 1)
            for _ in range(20)
        ])

        assert sum(1 for res in results if res.success) == 15

    async def test_unknown_city(self, redis_client):
        r, prefix = redis_client
        ledger = InventoryLedger(RedisInventoryStore(r=r, prefix=prefix))

        res = await ledger.decrement_inventory("nowhere-2030", "ga", 1)

        assert res.code == ErrorCode.CITY_NOT_FOUND


@pytest.mark.asyncio
class TestRedisDiscounts:
    async def test_one_use_and_reset(self, redis_client):
        r, prefix = redis_client
        ledger = DiscountLedger(RedisDiscountUsageStore(r=r, prefix=prefix))

        results = await asyncio.gather(*[
            ledger.record_member_discount_usage(
                **order("racer@example.com", session_id=f"cs_{i}")
            )
            for i in range(5)
        ])
        assert sum(1 for res in results if res.success) == 1

        reset = await ledger.reset_member_discount_usage(
            "racer@example.com", "refund", "admin_1"
        )
        resets = await ledger.get_discount_resets("racer@example.com")
        eligibility = await ledger.validate_member_discount_eligibility(
            "racer@example.com", "ga"
        )

        assert reset.success
        winner = next(res for res in results if res.success)
        assert resets[0].deleted_usage_id == winner.usage_id
        assert eligibility.eligible

    async def test_stats(self, redis_client):
        r, prefix = redis_client
        ledger = DiscountLedger(RedisDiscountUsageStore(r=r, prefix=prefix))
        await ledger.record_member_discount_usage(**order("a@example.com"))
        await ledger.record_member_discount_usage(
            **order("b@example.com", city_id="la-mar-2026", cents=500)
        )

        stats = await ledger.get_member_discount_usage_stats(limit=1)
        la = await ledger.get_member_discount_usage_stats(
            city_id="la-mar-2026"
        )

        assert stats.total_count == 2
        assert stats.total_discount_given == 1500
        assert [x.email for x in stats.records] == ["b@example.com"]
        assert la.total_discount_given == 500


class TestResetEncoding:
    def test_sold_marker_is_spliced_without_touching_the_rest(self):
        txn = InventoryTransaction(
            id="txn_1", city_id="dallas-jan-2026", tier=Tier.VIP, quantity=0,
            operation="reset", timestamp=1767225600.123456,
            metadata={"admin_user_id": "admin_1", "reason": 'say "@sold@"'},
        )

        raw = _txn_json(txn, sold_mark=True)
        d = orjson.loads(raw.replace('"@sold@"', "14"))

        assert d["quantity"] == 14
        assert d["metadata"]["previous_sold"] == 14
        assert d["metadata"]["reason"] == 'say "@sold@"'
        assert d["timestamp"] == 1767225600.123456
