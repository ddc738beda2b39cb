# workshopledger/checkout.py
"""
Checkout-side use of the ledgers.

Validation answers "can this order go ahead" and collects errors, warnings
and alternatives for the buyer. Nothing here reserves capacity: the sale is
only committed by `fulfill_paid_order`, after payment succeeded.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from . import config
from .errors import ErrorCode, InvalidInputError, StoreError
from .model.discount import DiscountLedger
from .model.inventory import InventoryLedger, Tier, parse_tier


@dataclass
class CheckoutValidation:
    valid: bool
    errors: List[str]
    warnings: List[str]
    inventory: Dict[str, Any]
    suggestions: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        if self.suggestions is None:
            out.pop("suggestions")
        return out


@dataclass(frozen=True)
class PaidOrder:
    session_id: str
    city_id: str
    ticket_type: str
    quantity: int
    email: Optional[str] = None
    is_member: bool = False
    original_amount_cents: int = 0
    discount_amount_cents: int = 0
    final_amount_cents: int = 0
    customer_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Fulfillment:
    inventory_ok: bool
    discount_recorded: bool = False
    code: Optional[ErrorCode] = None
    error: Optional[str] = None
    available_after: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["code"] = self.code.value if self.code else None
        return out


def _inventory_block(city_id, tier, quantity, available: int) -> Dict[str, Any]:
    return {
        "requested": quantity,
        "available": available,
        "tier": tier.value if isinstance(tier, Tier) else tier,
        "city_id": city_id,
    }


async def _suggestions(
    ledger: InventoryLedger, city_id: str, tier: Tier, quantity: int,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    other = Tier.VIP if tier is Tier.GA else Tier.GA
    other_available = await ledger.get_public_available_spots(city_id, other)
    if other_available >= quantity:
        out["alternative_tiers"] = [
            {"tier": other.value, "available": other_available}
        ]

    statuses = await ledger.get_all_inventory_statuses()
    candidates = [s for s in statuses if s.city_id != city_id]
    cities = [
        {"city_id": s.city_id, "available": s.public_available.get(tier)}
        for s in candidates[:config.SUGGESTION_CITY_LIMIT]
        if s.public_available.get(tier) >= quantity
    ]
    if cities:
        out["alternative_cities"] = cities
    return out


async def validate_checkout(
    ledger: InventoryLedger, city_id: str, ticket_type, quantity: int,
    include_suggestions: bool = False, strict: bool = True,
) -> CheckoutValidation:
    errors: List[str] = []
    warnings: List[str] = []

    tier: Any = str(ticket_type or "").lower()
    if not city_id:
        errors.append("City selection is required")
    try:
        tier = parse_tier(ticket_type)
    except InvalidInputError:
        errors.append("Valid ticket type is required (GA or VIP)")
    if (
        not isinstance(quantity, int) or isinstance(quantity, bool)
        or not 1 <= quantity <= config.MAX_QUANTITY_PER_ORDER
    ):
        errors.append(
            f"Quantity must be between 1 and {config.MAX_QUANTITY_PER_ORDER}"
        )
    if errors:
        return CheckoutValidation(
            valid=False, errors=errors, warnings=warnings,
            inventory=_inventory_block(city_id, tier, quantity, 0),
        )

    try:
        check = await ledger.validate_inventory_for_checkout(
            city_id, tier, quantity
        )
        result = CheckoutValidation(
            valid=check.valid, errors=errors, warnings=warnings,
            inventory=_inventory_block(city_id, tier, quantity, check.available),
        )
        if not check.valid:
            errors.append(check.error or "Insufficient inventory available")
            if include_suggestions:
                result.suggestions = await _suggestions(
                    ledger, city_id, tier, quantity
                )
    except StoreError as e:
        logger.bind(city_id=city_id).error(f"checkout validation failed: {e}")
        return CheckoutValidation(
            valid=False,
            errors=["Validation service temporarily unavailable"],
            warnings=warnings,
            inventory=_inventory_block(city_id, tier, quantity, 0),
        )

    if check.valid and check.available <= config.LOW_STOCK_WARNING:
        warnings.append(
            f"Only {check.available} {tier.value.upper()} tickets remaining!"
        )
    if strict and quantity > config.LARGE_ORDER_QUANTITY:
        warnings.append(
            "Large quantity order detected - may require additional "
            "verification"
        )
    result.valid = not errors
    return result


async def validate_bulk_checkout(
    ledger: InventoryLedger, selections: Sequence[Dict[str, Any]],
    include_suggestions: bool = False, strict: bool = True,
) -> Dict[str, Any]:
    """Each selection is a mapping with city_id, ticket_type and quantity."""
    results = []
    for sel in selections:
        results.append(await validate_checkout(
            ledger,
            sel.get("city_id"),
            sel.get("ticket_type"),
            sel.get("quantity"),
            include_suggestions=include_suggestions,
            strict=strict,
        ))
    summary = {
        "total_valid": sum(1 for r in results if r.valid),
        "total_invalid": sum(1 for r in results if not r.valid),
        "total_errors": sum(len(r.errors) for r in results),
        "total_warnings": sum(len(r.warnings) for r in results),
    }
    return {
        "valid": summary["total_invalid"] == 0,
        "results": [r.as_dict() for r in results],
        "summary": summary,
    }


async def quick_availability_check(
    ledger: InventoryLedger, city_id: str, tier, quantity: int = 1,
) -> Dict[str, Any]:
    tier = parse_tier(tier)
    try:
        spots = await ledger.get_public_available_spots(city_id, tier)
    except StoreError as e:
        logger.bind(city_id=city_id).error(f"availability check failed: {e}")
        return {
            "available": False,
            "spots": 0,
            "message": "Unable to check availability",
        }
    label = tier.value.upper()
    if spots >= quantity:
        message = f"{spots} {label} tickets available"
    else:
        message = f"Only {spots} {label} tickets available ({quantity} requested)"
    return {"available": spots >= quantity, "spots": spots, "message": message}


async def fulfill_paid_order(
    inventory: InventoryLedger, discounts: DiscountLedger, order: PaidOrder,
) -> Fulfillment:
    """Commit a paid order: take the seats, then burn the member discount.

    Payment has already happened, so a discount that fails to record does
    not undo the sale; it is reported for follow-up instead.
    """
    log = logger.bind(session_id=order.session_id, city_id=order.city_id)
    dec = await inventory.decrement_inventory(
        order.city_id, order.ticket_type, order.quantity,
        metadata={
            "session_id": order.session_id,
            "payment_intent_id": order.payment_intent_id,
            "customer_email": order.email,
        },
    )
    if not dec.success:
        log.error(f"paid order could not be fulfilled: {dec.error}")
        return Fulfillment(
            inventory_ok=False, code=dec.code, error=dec.error,
            available_after=dec.available_after,
        )

    if not order.is_member or not order.discount_amount_cents:
        return Fulfillment(inventory_ok=True, available_after=dec.available_after)

    rec = await discounts.record_member_discount_usage(
        email=order.email or "",
        session_id=order.session_id,
        city_id=order.city_id,
        ticket_type=order.ticket_type,
        quantity=order.quantity,
        discount_amount_cents=order.discount_amount_cents,
        original_amount_cents=order.original_amount_cents,
        final_amount_cents=order.final_amount_cents,
        customer_id=order.customer_id,
        payment_intent_id=order.payment_intent_id,
        metadata=order.metadata,
    )
    if not rec.success:
        log.warning(f"member discount not recorded: {rec.error}")
    return Fulfillment(
        inventory_ok=True,
        discount_recorded=rec.success,
        code=rec.code,
        error=rec.error,
        available_after=dec.available_after,
    )
