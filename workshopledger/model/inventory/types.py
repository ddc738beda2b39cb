from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from ...errors import InvalidInputError, Result
from ...helpers import to_iso


class Tier(str, Enum):
    GA = "ga"
    VIP = "vip"


TIERS = (Tier.GA, Tier.VIP)

OP_DECREMENT = "decrement"
OP_EXPAND = "expand"
OP_RESET = "reset"


def parse_tier(value) -> Tier:
    if isinstance(value, Tier):
        return value
    try:
        return Tier(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError(f"unknown tier: {value!r}") from None


@dataclass(frozen=True)
class TierCounts:
    ga: int = 0
    vip: int = 0

    def get(self, tier: Tier) -> int:
        return self.ga if tier is Tier.GA else self.vip

    def with_tier(self, tier: Tier, value: int) -> "TierCounts":
        if tier is Tier.GA:
            return replace(self, ga=value)
        return replace(self, vip=value)

    def as_dict(self) -> Dict[str, int]:
        return {"ga": self.ga, "vip": self.vip}


@dataclass(frozen=True)
class CityInventory:
    """Stored state of one city: limits and sold counts per tier."""
    city_id: str
    public_limits: TierCounts
    actual_limits: TierCounts
    sold: TierCounts
    updated_at: float


@dataclass(frozen=True)
class InventoryStatus:
    city_id: str
    public_limits: TierCounts
    actual_limits: TierCounts
    sold: TierCounts
    public_available: TierCounts
    actual_available: TierCounts
    is_public_sold_out: bool
    is_actual_sold_out: bool
    last_updated: float

    @classmethod
    def from_city(cls, city: CityInventory) -> "InventoryStatus":
        pub = TierCounts(
            ga=max(0, city.public_limits.ga - city.sold.ga),
            vip=max(0, city.public_limits.vip - city.sold.vip),
        )
        act = TierCounts(
            ga=max(0, city.actual_limits.ga - city.sold.ga),
            vip=max(0, city.actual_limits.vip - city.sold.vip),
        )
        return cls(
            city_id=city.city_id,
            public_limits=city.public_limits,
            actual_limits=city.actual_limits,
            sold=city.sold,
            public_available=pub,
            actual_available=act,
            is_public_sold_out=pub.ga == 0 and pub.vip == 0,
            is_actual_sold_out=act.ga == 0 and act.vip == 0,
            last_updated=city.updated_at,
        )

    def is_tier_public_sold_out(self, tier: Tier) -> bool:
        return self.public_available.get(tier) == 0

    def is_tier_actual_sold_out(self, tier: Tier) -> bool:
        return self.actual_available.get(tier) == 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "city_id": self.city_id,
            "public_limits": self.public_limits.as_dict(),
            "actual_limits": self.actual_limits.as_dict(),
            "sold": self.sold.as_dict(),
            "public_available": self.public_available.as_dict(),
            "actual_available": self.actual_available.as_dict(),
            "is_public_sold_out": self.is_public_sold_out,
            "is_actual_sold_out": self.is_actual_sold_out,
            "last_updated": to_iso(self.last_updated),
        }


@dataclass(frozen=True)
class InventoryTransaction:
    id: str
    city_id: str
    tier: Tier
    quantity: int
    operation: str  # decrement | expand | reset
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "city_id": self.city_id,
            "tier": self.tier.value,
            "quantity": self.quantity,
            "operation": self.operation,
            "timestamp": to_iso(self.timestamp),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class InventoryExpansion:
    id: str
    city_id: str
    tier: Tier
    additional_spots: int
    reason: str
    authorized_by: str
    timestamp: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "city_id": self.city_id,
            "tier": self.tier.value,
            "additional_spots": self.additional_spots,
            "reason": self.reason,
            "authorized_by": self.authorized_by,
            "timestamp": to_iso(self.timestamp),
        }


# ----------------------------
# Results
# ----------------------------
@dataclass(frozen=True)
class AvailabilityCheck:
    available: bool
    remaining: int


@dataclass(frozen=True)
class CheckoutInventoryCheck:
    valid: bool
    available: int
    error: Optional[str] = None


@dataclass(frozen=True)
class DecrementResult(Result):
    available_after: Optional[int] = None


@dataclass(frozen=True)
class ExpandResult(Result):
    new_limit: Optional[int] = None


@dataclass(frozen=True)
class BulkResult:
    success: bool
    total_cities: int
    success_count: int
    failure_count: int
    results: list
    operation: str
    authorized_by: str
    timestamp: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_cities": self.total_cities,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": list(self.results),
            "operation": self.operation,
            "authorized_by": self.authorized_by,
            "timestamp": to_iso(self.timestamp),
        }
