# model/inventory/_memory.py
"""
In-process inventory backend.

Every method does its check and its write with no `await` in between, so on
a single event loop each call is atomic. Not shared across processes and
lost on restart: use it for tests and local runs only.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .store import InventoryStore
from .types import (
    CityInventory, InventoryExpansion, InventoryTransaction, Tier, TierCounts,
)


class MemoryInventoryStore(InventoryStore):
    def __init__(self) -> None:
        self._cities: Dict[str, CityInventory] = {}
        self._txns: List[InventoryTransaction] = []
        self._expansions: List[InventoryExpansion] = []

    async def ensure_city(
        self, city_id: str, public_limits: TierCounts,
        actual_limits: TierCounts, now: float,
    ) -> bool:
        if city_id in self._cities:
            return False
        self._cities[city_id] = CityInventory(
            city_id=city_id,
            public_limits=public_limits,
            actual_limits=actual_limits,
            sold=TierCounts(0, 0),
            updated_at=now,
        )
        return True

    async def get_city(self, city_id: str) -> Optional[CityInventory]:
        # values are frozen; handing them out is a consistent snapshot
        return self._cities.get(city_id)

    async def list_cities(self) -> List[CityInventory]:
        return [self._cities[k] for k in sorted(self._cities)]

    async def try_decrement(
        self, city_id: str, tier: Tier, quantity: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        city = self._cities.get(city_id)
        if city is None:
            return False, None
        sold = city.sold.get(tier)
        if sold + quantity > city.actual_limits.get(tier):
            return False, city
        city = replace(
            city,
            sold=city.sold.with_tier(tier, sold + quantity),
            updated_at=txn.timestamp,
        )
        self._cities[city_id] = city
        self._txns.append(txn)
        return True, city

    async def expand_actual(
        self, city_id: str, tier: Tier, additional: int,
        expansion: InventoryExpansion, txn: InventoryTransaction,
    ) -> Optional[CityInventory]:
        city = self._cities.get(city_id)
        if city is None:
            return None
        limits = city.actual_limits
        city = replace(
            city,
            actual_limits=limits.with_tier(tier, limits.get(tier) + additional),
            updated_at=txn.timestamp,
        )
        self._cities[city_id] = city
        self._expansions.append(expansion)
        self._txns.append(txn)
        return city

    async def raise_public(
        self, city_id: str, tier: Tier, additional: int,
        txn: InventoryTransaction,
    ) -> Tuple[bool, Optional[CityInventory]]:
        city = self._cities.get(city_id)
        if city is None:
            return False, None
        new_public = city.public_limits.get(tier) + additional
        if new_public > city.actual_limits.get(tier):
            return False, city
        city = replace(
            city,
            public_limits=city.public_limits.with_tier(tier, new_public),
            updated_at=txn.timestamp,
        )
        self._cities[city_id] = city
        self._txns.append(txn)
        return True, city

    async def reset_sold(
        self, city_id: str, txns: List[InventoryTransaction],
    ) -> Optional[CityInventory]:
        city = self._cities.get(city_id)
        if city is None:
            return None
        for t in txns:
            cleared = city.sold.get(t.tier)
            self._txns.append(replace(
                t, quantity=cleared,
                metadata={**t.metadata, "previous_sold": cleared},
            ))
        city = replace(
            city, sold=TierCounts(0, 0), updated_at=txns[0].timestamp
        )
        self._cities[city_id] = city
        return city

    async def list_transactions(
        self, city_id: Optional[str] = None, limit: Optional[int] = None,
    ) -> List[InventoryTransaction]:
        # append order is creation order
        items = [
            t for t in reversed(self._txns)
            if city_id is None or t.city_id == city_id
        ]
        return items if limit is None else items[:limit]

    async def list_expansions(
        self, city_id: Optional[str] = None,
    ) -> List[InventoryExpansion]:
        return [
            e for e in reversed(self._expansions)
            if city_id is None or e.city_id == city_id
        ]
