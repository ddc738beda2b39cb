"""Discount usage store interface.

Keys are normalized emails. `insert_if_absent` must be a conditional write
on the backend; callers rely on it, not on a prior read, to keep one record
per email.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from .types import DiscountReset, MemberDiscountUsage, UsageStats


class DiscountUsageStore(ABC):

    async def create_schema(self) -> None:
        return None

    @abstractmethod
    async def get(self, email: str) -> Optional[MemberDiscountUsage]:
        ...

    @abstractmethod
    async def insert_if_absent(self, record: MemberDiscountUsage) -> bool:
        """True if stored, False if the email already has a record."""
        ...

    @abstractmethod
    async def delete_usage(
        self, email: str, reset: DiscountReset,
    ) -> Optional[MemberDiscountUsage]:
        """Delete the record and store `reset` (with deleted_usage_id set)
        in one unit. Returns the deleted record, None if there was none."""
        ...

    @abstractmethod
    async def query(
        self, *, start: Optional[float], end: Optional[float],
        city_id: Optional[str], limit: int, offset: int,
    ) -> UsageStats:
        """Newest first. Totals cover every match, records one page."""
        ...

    @abstractmethod
    async def list_resets(self, email: Optional[str] = None) -> List[DiscountReset]:
        """Newest first."""
        ...

    async def close(self) -> None:
        return None
