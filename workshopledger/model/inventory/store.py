"""Inventory store interface.

Backends must make every check-and-write a single atomic unit per
(city_id, tier): a conditional update, never a read followed by a write.
Audit records written by a mutation go into the same unit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .types import (
    CityInventory, InventoryExpansion, InventoryTransaction, Tier, TierCounts,
)


class InventoryStore(ABC):

    async def create_schema(self) -> None:
        """Prepare tables/keys. No-op for backends that need nothing."""
        return None

    @abstractmethod
    async def ensure_city(
        self, city_id: str, public_limits: TierCounts,
        actual_limits: TierCounts, now: float,
    ) -> bool:
        """Insert the city if absent. True if it was created now."""
        ...

    @abstractmethod
    async def get_city(self, city_id: str) -> Optional[CityInventory]:
        ...

    @abstractmethod
    async def list_cities(self) -> List[CityInventory]:
        """All cities ordered by city_id."""
        ...

    @abstractmethod
    async def try_decrement(
        self, city_id: str, tier: Tier, quantity: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        """Add `quantity` to sold only if sold + quantity <= actual limit.

        Returns (applied, state). state is None for an unknown city; when
        not applied it is the unchanged state.
        """
        ...

    @abstractmethod
    async def expand_actual(
        self, city_id: str, tier: Tier, additional: int,
        expansion: InventoryExpansion, txn: InventoryTransaction,
    ) -> Optional[CityInventory]:
        """Raise the actual limit. None for an unknown city."""
        ...

    @abstractmethod
    async def raise_public(
        self, city_id: str, tier: Tier, additional: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        """Raise the public limit only if it stays <= the actual limit."""
        ...

    @abstractmethod
    async def reset_sold(
        self, city_id: str, txns: List[InventoryTransaction],
    ) -> Optional[CityInventory]:
        """Zero sold for both tiers; `txns` is one reset record per tier.

        Backends fill in `quantity` and `metadata.previous_sold` with the
        counts they cleared.
        """
        ...

    @abstractmethod
    async def list_transactions(
        self, city_id: Optional[str] = None, limit: Optional[int] = None,
    ) -> List[InventoryTransaction]:
        """Newest first."""
        ...

    @abstractmethod
    async def list_expansions(
        self, city_id: Optional[str] = None,
    ) -> List[InventoryExpansion]:
        """Newest first."""
        ...

    async def close(self) -> None:
        return None
