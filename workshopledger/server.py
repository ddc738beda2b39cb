from __future__ import annotations
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse
from loguru import logger

from . import config
from .checkout import (
    PaidOrder, fulfill_paid_order, quick_availability_check,
    validate_bulk_checkout, validate_checkout,
)
from .errors import DomainError, ErrorCode, Result, StoreError
from .helpers import is_positive_int, now_ts, to_iso
from .infra import timings
from .log import setup_logging
from .model import Ledgers, open_ledgers
from .model.discount import DiscountLedger
from .model.inventory import InventoryLedger
from .model.inventory.analytics import (
    alert_buckets, alert_config, generate_inventory_analytics,
    inventory_summary,
)
from .seed import seed_cities


app = FastAPI(
    title="Workshop Ledger",
    default_response_class=ORJSONResponse,
)

_NOT_FOUND = (ErrorCode.CITY_NOT_FOUND, ErrorCode.NO_USAGE_RECORD)


def status_for(code: Optional[ErrorCode]) -> int:
    if code is None:
        return 200
    if code == ErrorCode.STORE_ERROR:
        return 503
    if code in _NOT_FOUND:
        return 404
    return 400


def respond(res: Result, **extra) -> ORJSONResponse:
    body = res.as_dict()
    body.update(extra)
    return ORJSONResponse(body, status_code=status_for(res.code))


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    if isinstance(exc, StoreError):
        logger.bind(path=request.url.path).error(f"store failure: {exc}")
    return ORJSONResponse(
        {"success": False, "code": exc.code.value, "error": exc.message},
        status_code=status_for(exc.code),
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    setup_logging()
    logger.info("Workshop Ledger is starting up...")
    logger.info(f"   - Ledger backend: {config.LEDGER_BACKEND}")


@app.on_event("startup")
async def _ledgers_start():
    ledgers = await open_ledgers()
    app.state.ledgers = ledgers
    n = await seed_cities(ledgers.inventory)
    logger.info(f"   - Cities in inventory: {n}")


@app.on_event("shutdown")
async def _ledgers_stop():
    ledgers: Optional[Ledgers] = getattr(app.state, "ledgers", None)
    if ledgers is not None:
        await ledgers.close()
        app.state.ledgers = None


def inventory_ledger(request: Request) -> InventoryLedger:
    return request.app.state.ledgers.inventory


def discount_ledger(request: Request) -> DiscountLedger:
    return request.app.state.ledgers.discounts


def _require(payload: dict, *names: str) -> None:
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise HTTPException(
            400, detail=f"Missing required fields: {', '.join(missing)}"
        )


def _public_view(status) -> dict:
    return {
        "city_id": status.city_id,
        "public_available": status.public_available.as_dict(),
        "is_sold_out": status.is_public_sold_out,
        "last_updated": to_iso(status.last_updated),
    }


# ----------------------------
# Public inventory
# ----------------------------
@app.get("/api/inventory")
async def get_inventory(inv: InventoryLedger = Depends(inventory_ledger)):
    statuses = await inv.get_all_inventory_statuses()
    return {"success": True, "data": [_public_view(s) for s in statuses]}


@app.get("/api/inventory/{city_id}")
async def get_city_inventory(
    city_id: str, inv: InventoryLedger = Depends(inventory_ledger),
):
    status = await inv.get_inventory_status(city_id)
    if status is None:
        raise HTTPException(404, detail="City not found")
    return {"success": True, "data": _public_view(status)}


@app.get("/api/inventory/{city_id}/availability")
async def get_city_availability(
    city_id: str, tier: str, quantity: int = 1,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    if quantity < 1:
        raise HTTPException(400, detail="quantity must be at least 1")
    data = await quick_availability_check(inv, city_id, tier, quantity)
    return {"success": True, "data": data}


# ----------------------------
# Member discount
# ----------------------------
@app.post("/api/discount/eligibility")
async def discount_eligibility(
    payload: dict, disc: DiscountLedger = Depends(discount_ledger),
):
    _require(payload, "email", "ticket_type")
    result = await disc.validate_member_discount_eligibility(
        payload["email"], payload["ticket_type"],
    )
    return {"success": True, "data": result.as_dict()}


# ----------------------------
# Checkout
# ----------------------------
@app.post("/api/checkout/validate")
async def checkout_validate(
    payload: dict, inv: InventoryLedger = Depends(inventory_ledger),
):
    result = await validate_checkout(
        inv,
        payload.get("city_id"),
        payload.get("ticket_type"),
        payload.get("quantity"),
        include_suggestions=bool(payload.get("include_suggestions", False)),
        strict=bool(payload.get("strict", True)),
    )
    return {"success": True, "data": result.as_dict()}


@app.post("/api/checkout/validate-bulk")
async def checkout_validate_bulk(
    payload: dict, inv: InventoryLedger = Depends(inventory_ledger),
):
    selections = payload.get("selections")
    if not isinstance(selections, list) or not all(
        isinstance(s, dict) for s in selections
    ):
        raise HTTPException(400, detail="selections must be a list of objects")
    data = await validate_bulk_checkout(
        inv, selections,
        include_suggestions=bool(payload.get("include_suggestions", False)),
        strict=bool(payload.get("strict", True)),
    )
    return {"success": True, "data": data}


@app.post("/api/checkout/fulfill")
async def checkout_fulfill(
    payload: dict,
    inv: InventoryLedger = Depends(inventory_ledger),
    disc: DiscountLedger = Depends(discount_ledger),
):
    """Called by the payment webhook once a payment has succeeded."""
    _require(payload, "session_id", "city_id", "ticket_type", "quantity")
    order = PaidOrder(
        session_id=payload["session_id"],
        city_id=payload["city_id"],
        ticket_type=payload["ticket_type"],
        quantity=payload["quantity"],
        email=payload.get("email"),
        is_member=bool(payload.get("is_member", False)),
        original_amount_cents=payload.get("original_amount_cents", 0),
        discount_amount_cents=payload.get("discount_amount_cents", 0),
        final_amount_cents=payload.get("final_amount_cents", 0),
        customer_id=payload.get("customer_id"),
        payment_intent_id=payload.get("payment_intent_id"),
        metadata=payload.get("metadata") or {},
    )
    result = await fulfill_paid_order(inv, disc, order)
    # a paid order whose discount failed to record is still a sale
    code = None if result.inventory_ok else result.code
    return ORJSONResponse(
        {"success": result.inventory_ok, "data": result.as_dict()},
        status_code=status_for(code),
    )


# ----------------------------
# Admin: inventory dashboard and bulk operations
# ----------------------------
@app.get("/api/admin/inventory")
async def admin_inventory(
    analytics: bool = False, alerts: bool = False,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    statuses = await inv.get_all_inventory_statuses()
    data = {
        "summary": inventory_summary(statuses),
        "inventories": [s.as_dict() for s in statuses],
    }
    if analytics:
        data["analytics"] = generate_inventory_analytics(statuses)
    if alerts:
        data["alert_config"] = alert_config()
    return {"success": True, "data": data}


@app.post("/api/admin/inventory")
async def admin_inventory_bulk(
    payload: dict, inv: InventoryLedger = Depends(inventory_ledger),
):
    _require(payload, "operation", "data", "authorized_by")
    operation = payload["operation"]
    data = payload["data"]
    authorized_by = payload["authorized_by"]
    if not isinstance(data, dict):
        raise HTTPException(400, detail="data must be an object")

    if operation == "expand":
        cities = data.get("cities")
        if (
            not isinstance(cities, list) or not data.get("tier")
            or not is_positive_int(data.get("additional_spots"))
        ):
            raise HTTPException(400, detail="Invalid bulk expansion data")
        result = await inv.bulk_expand_inventory(
            cities, data["tier"], data["additional_spots"], authorized_by,
            data.get("reason") or "Bulk expansion via admin API",
        )
        return {"success": result.success, "data": result.as_dict()}

    if operation == "reset":
        cities = data.get("cities")
        if not isinstance(cities, list) or not data.get("reason"):
            raise HTTPException(400, detail="Invalid bulk reset data")
        result = await inv.bulk_reset_inventory(
            cities, authorized_by, data["reason"],
        )
        return {"success": result.success, "data": result.as_dict()}

    if operation == "alert":
        message = data.get("message")
        if not message:
            raise HTTPException(400, detail="Alert message is required")
        urgency = data.get("urgency") or "medium"
        statuses = await inv.get_all_inventory_statuses()
        logger.bind(urgency=urgency).warning(
            f"manual admin alert by {authorized_by}: {message}"
        )
        return {
            "success": True,
            "data": {
                "message": "Manual alert sent",
                "urgency": urgency,
                "alerts": alert_buckets(statuses),
                "authorized_by": authorized_by,
                "timestamp": to_iso(now_ts()),
            },
        }

    raise HTTPException(
        400, detail="Invalid operation. Must be expand, reset, or alert"
    )


# ----------------------------
# Admin: per-city inventory
# ----------------------------
@app.get("/api/admin/inventory/{city_id}")
async def admin_city_inventory(
    city_id: str, transactions: bool = False, expansions: bool = False,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    status = await inv.get_inventory_status(city_id)
    if status is None:
        raise HTTPException(404, detail="City not found")
    data = {"inventory": status.as_dict()}
    if transactions:
        data["transactions"] = [
            t.as_dict()
            for t in await inv.get_inventory_transactions(city_id, 100)
        ]
    if expansions:
        data["expansions"] = [
            e.as_dict() for e in await inv.get_inventory_expansions(city_id)
        ]
    return {"success": True, "data": data}


@app.post("/api/admin/inventory/{city_id}/expand")
async def admin_expand(
    city_id: str, payload: dict,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    _require(payload, "tier", "additional_spots", "authorized_by")
    res = await inv.expand_inventory(
        city_id, payload["tier"], payload["additional_spots"],
        payload["authorized_by"],
        payload.get("reason") or "Admin expansion via API",
    )
    return respond(res, city_id=city_id)


@app.post("/api/admin/inventory/{city_id}/public-limit")
async def admin_raise_public(
    city_id: str, payload: dict,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    _require(payload, "tier", "additional_spots", "authorized_by", "reason")
    res = await inv.raise_public_limit(
        city_id, payload["tier"], payload["additional_spots"],
        payload["authorized_by"], payload["reason"],
    )
    return respond(res, city_id=city_id)


@app.post("/api/admin/inventory/{city_id}/reset")
async def admin_reset(
    city_id: str, payload: dict,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    _require(payload, "authorized_by", "reason")
    res = await inv.reset_inventory(
        city_id, payload["authorized_by"], payload["reason"],
    )
    return respond(res, city_id=city_id)


@app.get("/api/admin/transactions")
async def admin_transactions(
    city_id: Optional[str] = None, limit: int = 50,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    items = await inv.get_inventory_transactions(city_id, limit)
    return {"items": [t.as_dict() for t in items], "limit": limit}


@app.get("/api/admin/expansions")
async def admin_expansions(
    city_id: Optional[str] = None,
    inv: InventoryLedger = Depends(inventory_ledger),
):
    items = await inv.get_inventory_expansions(city_id)
    return {"items": [e.as_dict() for e in items]}


# ----------------------------
# Admin: member discounts
# ----------------------------
@app.get("/api/admin/discounts")
async def admin_discount_stats(
    start: Optional[str] = None, end: Optional[str] = None,
    city_id: Optional[str] = None, limit: int = 100, offset: int = 0,
    disc: DiscountLedger = Depends(discount_ledger),
):
    stats = await disc.get_member_discount_usage_stats(
        start=start, end=end, city_id=city_id, limit=limit, offset=offset,
    )
    return {"success": True, "data": stats.as_dict()}


@app.post("/api/admin/discounts/reset")
async def admin_discount_reset(
    payload: dict, disc: DiscountLedger = Depends(discount_ledger),
):
    _require(payload, "email")
    res = await disc.reset_member_discount_usage(
        payload["email"], payload.get("reason") or "",
        payload.get("authorized_by"),
    )
    return respond(res)


@app.get("/api/admin/discounts/resets")
async def admin_discount_resets(
    email: Optional[str] = None,
    disc: DiscountLedger = Depends(discount_ledger),
):
    items = await disc.get_discount_resets(email)
    return {"items": [r.as_dict() for r in items]}


# ----------------------------
# In-process timings
# ----------------------------
@app.get("/api/admin/timings")
async def admin_timings(reset: bool = False):
    items = timings.aggregates()
    if reset:
        timings.clear()
    return {"items": items}
