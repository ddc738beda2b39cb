# model/discount/_memory.py
from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional

from .store import DiscountUsageStore
from .types import DiscountReset, MemberDiscountUsage, UsageStats


class MemoryDiscountUsageStore(DiscountUsageStore):
    """Process-local map; insert-if-absent holds because nothing awaits
    between the membership test and the write."""

    def __init__(self) -> None:
        self._usage: Dict[str, MemberDiscountUsage] = {}
        self._resets: List[DiscountReset] = []

    async def get(self, email: str) -> Optional[MemberDiscountUsage]:
        return self._usage.get(email)

    async def insert_if_absent(self, record: MemberDiscountUsage) -> bool:
        if record.email in self._usage:
            return False
        self._usage[record.email] = record
        return True

    async def delete_usage(
        self, email: str, reset: DiscountReset,
    ) -> Optional[MemberDiscountUsage]:
        record = self._usage.pop(email, None)
        if record is None:
            return None
        self._resets.append(replace(reset, deleted_usage_id=record.id))
        return record

    async def query(
        self, *, start: Optional[float], end: Optional[float],
        city_id: Optional[str], limit: int, offset: int,
    ) -> UsageStats:
        records = [
            r for r in self._usage.values()
            if (start is None or r.used_at >= start)
            and (end is None or r.used_at <= end)
            and (city_id is None or r.city_id == city_id)
        ]
        records.sort(key=lambda r: (r.used_at, r.id), reverse=True)
        return UsageStats(
            records=records[offset:offset + limit],
            total_count=len(records),
            total_discount_given=sum(r.discount_amount_cents for r in records),
        )

    async def list_resets(self, email: Optional[str] = None) -> List[DiscountReset]:
        return [
            r for r in reversed(self._resets)
            if email is None or r.email == email
        ]
