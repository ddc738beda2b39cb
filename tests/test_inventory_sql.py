"""
Inventory ledger on the SQL backend (SQLite through aiosqlite).

The conditional UPDATE is what keeps sales under the actual limit here, so
the concurrency test goes through real connections.
"""

import asyncio

import pytest

from conftest import ATLANTA, DALLAS, LA
from workshopledger.errors import ErrorCode
from workshopledger.model.inventory import Tier


@pytest.mark.asyncio
class TestSqlInventory:
    async def test_seeded_cities_round_trip(self, sql_inventory):
        statuses = await sql_inventory.get_all_inventory_statuses()

        assert [s.city_id for s in statuses] == sorted([DALLAS, ATLANTA, LA])
        assert all(s.public_limits.ga == 35 for s in statuses)
        assert all(s.actual_limits.vip == 15 for s in statuses)
        assert all(s.sold.ga == 0 for s in statuses)

    async def test_ensure_city_is_idempotent(self, sql_inventory):
        await sql_inventory.decrement_inventory(DALLAS, "ga", 2)

        await sql_inventory.ensure_city(DALLAS, 35, 15)

        status = await sql_inventory.get_inventory_status(DALLAS)
        assert status.sold.ga == 2

    async def test_decrement_and_reject(self, sql_inventory):
        ok = await sql_inventory.decrement_inventory(ATLANTA, "vip", 14)
        rejected = await sql_inventory.decrement_inventory(ATLANTA, "vip", 2)

        assert ok.success and ok.available_after == 1
        assert rejected.code == ErrorCode.INSUFFICIENT_INVENTORY
        assert rejected.available_after == 1
        status = await sql_inventory.get_inventory_status(ATLANTA)
        assert status.sold.vip == 14

    async def test_unknown_city(self, sql_inventory):
        res = await sql_inventory.decrement_inventory("nowhere-2030", "ga", 1)

        assert res.code == ErrorCode.CITY_NOT_FOUND

    async def test_concurrent_buyers_never_oversell(self, sql_inventory):
        await sql_inventory.decrement_inventory(LA, "vip", 10)

        results = await asyncio.gather(*[
            sql_inventory.decrement_inventory(LA, "vip", 1) for _ in range(8)
        ])

        assert sum(1 for r in results if r.success) == 5
        status = await sql_inventory.get_inventory_status(LA)
        assert status.sold.vip == 15

    async def test_expand_and_audit(self, sql_inventory):
        res = await sql_inventory.expand_inventory(
            DALLAS, "ga", 10, "admin_1", "waitlist"
        )

        assert res.new_limit == 45
        status = await sql_inventory.get_inventory_status(DALLAS)
        assert status.public_limits.ga == 35
        exps = await sql_inventory.get_inventory_expansions(DALLAS)
        assert [(e.additional_spots, e.reason) for e in exps] == [
            (10, "waitlist")
        ]
        txns = await sql_inventory.get_inventory_transactions(DALLAS)
        assert txns[0].operation == "expand"
        assert txns[0].metadata == {
            "admin_user_id": "admin_1", "reason": "waitlist",
        }

    async def test_raise_public_limit_is_capped(self, sql_inventory):
        await sql_inventory.expand_inventory(DALLAS, "vip", 2, "admin_1")

        ok = await sql_inventory.raise_public_limit(
            DALLAS, "vip", 2, "admin_1", "release reserve"
        )
        capped = await sql_inventory.raise_public_limit(
            DALLAS, "vip", 1, "admin_1", "too far"
        )

        assert ok.success and ok.new_limit == 17
        assert capped.code == ErrorCode.INVALID_INPUT

    async def test_reset_records_previous_sold(self, sql_inventory):
        await sql_inventory.decrement_inventory(DALLAS, "ga", 3)
        await sql_inventory.decrement_inventory(DALLAS, "vip", 2)

        res = await sql_inventory.reset_inventory(DALLAS, "admin_1", "demo")

        assert res.success
        status = await sql_inventory.get_inventory_status(DALLAS)
        assert (status.sold.ga, status.sold.vip) == (0, 0)
        resets = {
            t.tier: t
            for t in await sql_inventory.get_inventory_transactions(DALLAS)
            if t.operation == "reset"
        }
        assert resets[Tier.GA].quantity == 3
        assert resets[Tier.VIP].metadata["previous_sold"] == 2

    async def test_reset_racing_sales_accounts_for_every_seat(
        self, sql_inventory
    ):
        await sql_inventory.decrement_inventory(ATLANTA, "ga", 4)

        results = await asyncio.gather(
            *[sql_inventory.decrement_inventory(ATLANTA, "ga", 1)
              for _ in range(6)],
            sql_inventory.reset_inventory(ATLANTA, "admin_1", "race"),
            *[sql_inventory.decrement_inventory(ATLANTA, "ga", 1)
              for _ in range(6)],
        )

        assert all(r.success for r in results)
        reset = next(
            t for t in await sql_inventory.get_inventory_transactions(ATLANTA)
            if t.operation == "reset" and t.tier is Tier.GA
        )
        status = await sql_inventory.get_inventory_status(ATLANTA)
        assert reset.quantity == reset.metadata["previous_sold"]
        assert reset.quantity + status.sold.ga == 4 + 12

    async def test_transactions_filter_and_limit(self, sql_inventory):
        await sql_inventory.decrement_inventory(DALLAS, "ga", 1)
        await sql_inventory.decrement_inventory(ATLANTA, "ga", 2)
        await sql_inventory.decrement_inventory(ATLANTA, "ga", 3)

        everything = await sql_inventory.get_inventory_transactions(None)
        atlanta = await sql_inventory.get_inventory_transactions(ATLANTA, 1)

        assert len(everything) == 3
        assert [t.quantity for t in atlanta] == [3]
