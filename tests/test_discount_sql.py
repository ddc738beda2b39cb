"""
Discount usage ledger on the SQL backend (SQLite through aiosqlite).
"""

import asyncio

import pytest

from workshopledger.errors import ErrorCode
from workshopledger.helpers import new_id, now_ts
from workshopledger.model.discount import MemberDiscountUsage


def usage(email="member@example.com", **overrides):
    fields = dict(
        id=new_id("mdu"),
        email=email,
        session_id="cs_test_1",
        city_id="dallas-jan-2026",
        ticket_type="ga",
        quantity=2,
        discount_amount_cents=1500,
        original_amount_cents=7500,
        final_amount_cents=6000,
        used_at=now_ts(),
    )
    fields.update(overrides)
    return MemberDiscountUsage(**fields)


def order(email="member@example.com", **overrides):
    fields = dict(
        email=email,
        session_id="cs_test_1",
        city_id="dallas-jan-2026",
        ticket_type="vip",
        quantity=1,
        discount_amount_cents=1000,
        original_amount_cents=10000,
        final_amount_cents=9000,
    )
    fields.update(overrides)
    return fields


@pytest.mark.asyncio
class TestSqlDiscountStore:
    async def test_insert_if_absent(self, sql_discounts):
        store = sql_discounts.store

        first = await store.insert_if_absent(usage())
        second = await store.insert_if_absent(usage(session_id="cs_test_2"))

        assert first is True
        assert second is False
        stored = await store.get("member@example.com")
        assert stored.session_id == "cs_test_1"
        assert stored.quantity == 2

    async def test_metadata_round_trip(self, sql_discounts):
        store = sql_discounts.store
        await store.insert_if_absent(usage(metadata={"coupon": "MEMBER"}))

        stored = await store.get("member@example.com")

        assert stored.metadata == {"coupon": "MEMBER"}


@pytest.mark.asyncio
class TestSqlDiscountLedger:
    async def test_record_then_check(self, sql_discounts):
        rec = await sql_discounts.record_member_discount_usage(
            **order(email=" Foo@Bar.com")
        )

        check = await sql_discounts.check_member_discount_usage("foo@bar.com")

        assert rec.success
        assert check.has_used_discount
        assert check.usage_record.id == rec.usage_id
        assert check.usage_record.ticket_type == "vip"

    async def test_concurrent_records_keep_one(self, sql_discounts):
        results = await asyncio.gather(*[
            sql_discounts.record_member_discount_usage(
                **order(email="racer@example.com", session_id=f"cs_{i}")
            )
            for i in range(6)
        ])

        assert sum(1 for r in results if r.success) == 1
        assert all(
            r.code == ErrorCode.DISCOUNT_ALREADY_USED
            for r in results if not r.success
        )
        stats = await sql_discounts.get_member_discount_usage_stats()
        assert stats.total_count == 1

    async def test_reset_deletes_and_logs(self, sql_discounts):
        rec = await sql_discounts.record_member_discount_usage(**order())

        res = await sql_discounts.reset_member_discount_usage(
            "member@example.com", "chargeback reversed", "admin_9"
        )

        assert res.success
        check = await sql_discounts.check_member_discount_usage(
            "member@example.com"
        )
        assert not check.has_used_discount
        resets = await sql_discounts.get_discount_resets()
        assert [(r.email, r.deleted_usage_id) for r in resets] == [
            ("member@example.com", rec.usage_id)
        ]

    async def test_reset_without_record(self, sql_discounts):
        res = await sql_discounts.reset_member_discount_usage(
            "ghost@example.com", "support"
        )

        assert res.code == ErrorCode.NO_USAGE_RECORD

    async def test_stats_filters_and_pages(self, sql_discounts):
        for i, city in enumerate(["dallas-jan-2026", "nyc-apr-2026",
                                  "dallas-jan-2026", "dallas-jan-2026"]):
            await sql_discounts.record_member_discount_usage(**order(
                email=f"m{i}@example.com", city_id=city,
                discount_amount_cents=100 * (i + 1),
            ))

        dallas = await sql_discounts.get_member_discount_usage_stats(
            city_id="dallas-jan-2026", limit=2, offset=1,
        )
        empty = await sql_discounts.get_member_discount_usage_stats(
            start="2999-01-01T00:00:00Z"
        )

        assert dallas.total_count == 3
        assert dallas.total_discount_given == 100 + 300 + 400
        assert [r.email for r in dallas.records] == [
            "m2@example.com", "m0@example.com",
        ]
        assert empty.total_count == 0
        assert empty.total_discount_given == 0
