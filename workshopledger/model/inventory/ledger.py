# model/inventory/ledger.py
"""
Inventory ledger: per (city, tier) capacity with a public limit shown to
customers and an actual limit that may hold an operator reserve.

- sales are checked against the actual limit and never oversell
- expansions raise the actual limit only; the public limit moves only
  through `raise_public_limit`
- resets zero sold counts and leave limits alone
- every mutation lands in the audit log
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from ...errors import DomainError, ErrorCode, InvalidInputError, Result
from ...helpers import is_positive_int, new_id, now_ts
from ...infra.timings import timeit
from .store import InventoryStore
from .types import (
    OP_DECREMENT, OP_EXPAND, OP_RESET, TIERS,
    AvailabilityCheck, BulkResult, CheckoutInventoryCheck, DecrementResult,
    ExpandResult, InventoryExpansion, InventoryStatus, InventoryTransaction,
    Tier, TierCounts, parse_tier,
)


def _validate_quantity(quantity, what: str = "quantity") -> None:
    if not is_positive_int(quantity):
        raise InvalidInputError(f"{what} must be a positive integer")


def _blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


class InventoryLedger:
    def __init__(self, store: InventoryStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    async def ensure_city(
        self, city_id: str, public_ga: int, public_vip: int,
        actual_ga: Optional[int] = None, actual_vip: Optional[int] = None,
    ) -> Result:
        """Register a city if it does not exist yet; existing cities keep
        their state."""
        actual_ga = public_ga if actual_ga is None else actual_ga
        actual_vip = public_vip if actual_vip is None else actual_vip
        if _blank(city_id):
            return Result.fail(ErrorCode.INVALID_INPUT, "city_id is required")
        for v in (public_ga, public_vip, actual_ga, actual_vip):
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                return Result.fail(
                    ErrorCode.INVALID_INPUT,
                    "limits must be non-negative integers",
                )
        if public_ga > actual_ga or public_vip > actual_vip:
            return Result.fail(
                ErrorCode.INVALID_INPUT,
                "public limit cannot exceed actual limit",
            )
        created = await self.store.ensure_city(
            city_id,
            TierCounts(public_ga, public_vip),
            TierCounts(actual_ga, actual_vip),
            now_ts(),
        )
        if created:
            logger.bind(city_id=city_id).info(
                "inventory city registered "
                f"(ga {public_ga}/{actual_ga}, vip {public_vip}/{actual_vip})"
            )
        return Result.ok()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_all_inventory_statuses(self) -> List[InventoryStatus]:
        async with timeit("inventory.list"):
            cities = await self.store.list_cities()
        return [InventoryStatus.from_city(c) for c in cities]

    async def get_inventory_status(
        self, city_id: str
    ) -> Optional[InventoryStatus]:
        city = await self.store.get_city(city_id)
        return InventoryStatus.from_city(city) if city else None

    async def check_inventory_status(
        self, city_id: str, tier, requested_quantity: int
    ) -> AvailabilityCheck:
        """Room for `requested_quantity` against the actual limit?"""
        tier = parse_tier(tier)
        _validate_quantity(requested_quantity, "requested_quantity")
        remaining = await self.get_actual_available_spots(city_id, tier)
        return AvailabilityCheck(
            available=remaining >= requested_quantity,
            remaining=remaining,
        )

    async def get_public_available_spots(self, city_id: str, tier) -> int:
        tier = parse_tier(tier)
        status = await self.get_inventory_status(city_id)
        if status is None:
            logger.bind(city_id=city_id).warning("city not in inventory")
            return 0
        return status.public_available.get(tier)

    async def get_actual_available_spots(self, city_id: str, tier) -> int:
        tier = parse_tier(tier)
        status = await self.get_inventory_status(city_id)
        if status is None:
            logger.bind(city_id=city_id).warning("city not in inventory")
            return 0
        return status.actual_available.get(tier)

    async def validate_inventory_for_checkout(
        self, city_id: str, tier, quantity: int
    ) -> CheckoutInventoryCheck:
        tier = parse_tier(tier)
        _validate_quantity(quantity)
        available = await self.get_actual_available_spots(city_id, tier)
        if available >= quantity:
            return CheckoutInventoryCheck(valid=True, available=available)
        return CheckoutInventoryCheck(
            valid=False,
            available=available,
            error=(
                f"Only {available} {tier.value.upper()} tickets available, "
                f"but {quantity} requested"
            ),
        )

    async def get_inventory_transactions(
        self, city_id: Optional[str] = None, limit: Optional[int] = 50,
    ) -> List[InventoryTransaction]:
        if limit is not None and (not isinstance(limit, int) or limit < 0):
            raise InvalidInputError("limit must be a non-negative integer")
        return await self.store.list_transactions(city_id, limit)

    async def get_inventory_expansions(
        self, city_id: Optional[str] = None,
    ) -> List[InventoryExpansion]:
        return await self.store.list_expansions(city_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def decrement_inventory(
        self, city_id: str, tier, quantity: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DecrementResult:
        """Record a sale. Sold out is a result, not an exception."""
        if _blank(city_id):
            return DecrementResult.fail(
                ErrorCode.INVALID_INPUT, "city_id is required"
            )
        try:
            tier = parse_tier(tier)
            _validate_quantity(quantity)
        except InvalidInputError as e:
            return DecrementResult.fail(e.code, e.message)

        txn = InventoryTransaction(
            id=new_id("txn"),
            city_id=city_id,
            tier=tier,
            quantity=quantity,
            operation=OP_DECREMENT,
            timestamp=now_ts(),
            metadata={
                k: v for k, v in (metadata or {}).items() if v is not None
            },
        )
        async with timeit("inventory.decrement"):
            applied, city = await self.store.try_decrement(
                city_id, tier, quantity, txn
            )

        log = logger.bind(city_id=city_id, tier=tier.value)
        if city is None:
            return DecrementResult.fail(
                ErrorCode.CITY_NOT_FOUND, f"City {city_id} not found"
            )
        available = city.actual_limits.get(tier) - city.sold.get(tier)
        if not applied:
            log.info(f"decrement rejected: {quantity} requested, "
                     f"{available} available")
            return DecrementResult.fail(
                ErrorCode.INSUFFICIENT_INVENTORY,
                f"Insufficient inventory. Available: {available}, "
                f"Requested: {quantity}",
                available_after=available,
            )
        log.info(f"inventory decremented: -{quantity} = {available} remaining")
        return DecrementResult.ok(available_after=available)

    async def expand_inventory(
        self, city_id: str, tier, additional_spots: int, authorized_by: str,
        reason: str = "High demand expansion",
    ) -> ExpandResult:
        """Raise the actual limit. The public limit stays where it is."""
        if _blank(city_id):
            return ExpandResult.fail(
                ErrorCode.INVALID_INPUT, "city_id is required"
            )
        try:
            tier = parse_tier(tier)
            _validate_quantity(additional_spots, "additional_spots")
        except InvalidInputError as e:
            return ExpandResult.fail(e.code, e.message)
        if _blank(authorized_by):
            return ExpandResult.fail(
                ErrorCode.INVALID_INPUT,
                "Authorization required for inventory expansion",
            )
        reason = reason or "High demand expansion"

        ts = now_ts()
        expansion = InventoryExpansion(
            id=new_id("exp"),
            city_id=city_id,
            tier=tier,
            additional_spots=additional_spots,
            reason=reason,
            authorized_by=authorized_by,
            timestamp=ts,
        )
        txn = InventoryTransaction(
            id=new_id("txn"),
            city_id=city_id,
            tier=tier,
            quantity=additional_spots,
            operation=OP_EXPAND,
            timestamp=ts,
            metadata={"admin_user_id": authorized_by, "reason": reason},
        )
        async with timeit("inventory.expand"):
            city = await self.store.expand_actual(
                city_id, tier, additional_spots, expansion, txn
            )
        if city is None:
            return ExpandResult.fail(
                ErrorCode.CITY_NOT_FOUND, f"City {city_id} not found"
            )
        new_limit = city.actual_limits.get(tier)
        logger.bind(city_id=city_id, tier=tier.value).warning(
            f"inventory expanded: +{additional_spots} = {new_limit} total "
            f"by {authorized_by} ({reason})"
        )
        return ExpandResult.ok(new_limit=new_limit)

    async def raise_public_limit(
        self, city_id: str, tier, additional_spots: int, authorized_by: str,
        reason: str,
    ) -> ExpandResult:
        """Advertise more of the actual capacity. Never past actual."""
        if _blank(city_id):
            return ExpandResult.fail(
                ErrorCode.INVALID_INPUT, "city_id is required"
            )
        try:
            tier = parse_tier(tier)
            _validate_quantity(additional_spots, "additional_spots")
        except InvalidInputError as e:
            return ExpandResult.fail(e.code, e.message)
        if _blank(authorized_by) or _blank(reason):
            return ExpandResult.fail(
                ErrorCode.INVALID_INPUT,
                "authorized_by and reason are required",
            )

        txn = InventoryTransaction(
            id=new_id("txn"),
            city_id=city_id,
            tier=tier,
            quantity=additional_spots,
            operation=OP_EXPAND,
            timestamp=now_ts(),
            metadata={
                "admin_user_id": authorized_by,
                "reason": reason,
                "scope": "public",
            },
        )
        applied, city = await self.store.raise_public(
            city_id, tier, additional_spots, txn
        )
        if city is None:
            return ExpandResult.fail(
                ErrorCode.CITY_NOT_FOUND, f"City {city_id} not found"
            )
        if not applied:
            return ExpandResult.fail(
                ErrorCode.INVALID_INPUT,
                "public limit cannot exceed actual limit "
                f"({city.actual_limits.get(tier)})",
            )
        new_limit = city.public_limits.get(tier)
        logger.bind(city_id=city_id, tier=tier.value).warning(
            f"public limit raised: +{additional_spots} = {new_limit} "
            f"by {authorized_by} ({reason})"
        )
        return ExpandResult.ok(new_limit=new_limit)

    async def reset_inventory(
        self, city_id: str, authorized_by: str, reason: str,
    ) -> Result:
        """Zero sold counts for both tiers. Destructive override."""
        if _blank(city_id):
            return Result.fail(ErrorCode.INVALID_INPUT, "city_id is required")
        if _blank(authorized_by):
            return Result.fail(
                ErrorCode.INVALID_INPUT,
                "Authorization required for inventory reset",
            )
        if _blank(reason):
            return Result.fail(
                ErrorCode.INVALID_INPUT, "A reason is required for reset"
            )

        ts = now_ts()
        txns = [
            InventoryTransaction(
                id=new_id("txn"),
                city_id=city_id,
                tier=tier,
                quantity=0,
                operation=OP_RESET,
                timestamp=ts,
                metadata={"admin_user_id": authorized_by, "reason": reason},
            )
            for tier in TIERS
        ]
        async with timeit("inventory.reset"):
            city = await self.store.reset_sold(city_id, txns)
        if city is None:
            return Result.fail(
                ErrorCode.CITY_NOT_FOUND, f"City {city_id} not found"
            )
        logger.bind(city_id=city_id).critical(
            f"inventory reset by {authorized_by}: {reason}"
        )
        return Result.ok()

    # ------------------------------------------------------------------
    # Bulk admin operations: per-city isolation, partial failure reported
    # ------------------------------------------------------------------
    async def _bulk(self, city_ids: Iterable[str], op) -> List[Dict[str, Any]]:
        results = []
        for city_id in city_ids:
            try:
                res = await op(city_id)
                results.append({
                    "city_id": city_id,
                    "success": res.success,
                    "code": res.code.value if res.code else None,
                    "error": res.error,
                })
            except DomainError as e:
                logger.bind(city_id=city_id).error(
                    f"bulk operation failed: {e}"
                )
                results.append({
                    "city_id": city_id,
                    "success": False,
                    "code": e.code.value,
                    "error": e.message,
                })
            except Exception as e:
                logger.bind(city_id=city_id).exception(
                    "bulk operation failed unexpectedly"
                )
                results.append({
                    "city_id": city_id,
                    "success": False,
                    "code": ErrorCode.STORE_ERROR.value,
                    "error": f"unexpected failure: {type(e).__name__}",
                })
        return results

    @staticmethod
    def _bulk_result(
        results: List[Dict[str, Any]], operation: str, authorized_by: str,
    ) -> BulkResult:
        failures = sum(1 for r in results if not r["success"])
        return BulkResult(
            success=failures == 0,
            total_cities=len(results),
            success_count=len(results) - failures,
            failure_count=failures,
            results=results,
            operation=operation,
            authorized_by=authorized_by,
            timestamp=now_ts(),
        )

    async def bulk_expand_inventory(
        self, city_ids: List[str], tier, additional_spots: int,
        authorized_by: str, reason: str = "Bulk expansion via admin API",
    ) -> BulkResult:
        results = await self._bulk(
            city_ids,
            lambda c: self.expand_inventory(
                c, tier, additional_spots, authorized_by, reason
            ),
        )
        return self._bulk_result(results, "bulk_expansion", authorized_by)

    async def bulk_reset_inventory(
        self, city_ids: List[str], authorized_by: str, reason: str,
    ) -> BulkResult:
        results = await self._bulk(
            city_ids,
            lambda c: self.reset_inventory(c, authorized_by, reason),
        )
        out = self._bulk_result(results, "bulk_reset", authorized_by)
        logger.critical(
            f"bulk inventory reset by {authorized_by}: {reason} "
            f"({out.success_count} ok, {out.failure_count} failed)"
        )
        return out


__all__ = ["InventoryLedger", "Tier"]
