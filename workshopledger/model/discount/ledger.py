# model/discount/ledger.py
"""
Member discount usage ledger: each normalized email gets the member
discount once. Usage is recorded after payment succeeds; an admin reset
deletes the record (and logs why) so the member becomes eligible again.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional, Union

from loguru import logger

from ... import config
from ...errors import ErrorCode, InvalidInputError, Result, StoreError
from ...helpers import (
    from_iso, is_positive_int, is_valid_email, new_id, normalize_email, now_ts,
)
from ...infra.timings import timeit
from ..inventory.types import parse_tier
from .store import DiscountUsageStore
from .types import (
    DiscountReset, DiscountUsageCheck, Eligibility, MemberDiscountUsage,
    RecordResult, UsageStats,
)

ALREADY_USED = "Member has already used their one-time discount"

TimeBound = Union[None, float, int, str, datetime]


def _as_ts(value: TimeBound) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    try:
        return from_iso(value)
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidInputError(f"invalid time bound: {value!r}") from e


def _non_negative_cents(**amounts: Any) -> Optional[str]:
    for name, v in amounts.items():
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            return f"{name} must be a non-negative integer"
    return None


class DiscountLedger:
    def __init__(self, store: DiscountUsageStore) -> None:
        self.store = store

    async def _lookup(self, email: str) -> Optional[MemberDiscountUsage]:
        async with timeit("discount.lookup"):
            return await self.store.get(normalize_email(email))

    async def check_member_discount_usage(self, email: str) -> DiscountUsageCheck:
        try:
            record = await self._lookup(email)
        except Exception:
            # fail closed, intentionally: unreadable usage counts as used
            logger.exception("discount usage check failed; denying discount")
            return DiscountUsageCheck(has_used_discount=True)
        return DiscountUsageCheck(
            has_used_discount=record is not None, usage_record=record,
        )

    async def validate_member_discount_eligibility(
        self, email: str, ticket_type,
    ) -> Eligibility:
        try:
            tier = parse_tier(ticket_type)
        except InvalidInputError as e:
            return Eligibility(eligible=False, reason=e.message)
        if not is_valid_email(normalize_email(email)):
            return Eligibility(
                eligible=False, reason="A valid email address is required",
            )

        usage = await self.check_member_discount_usage(email)
        if usage.has_used_discount:
            return Eligibility(
                eligible=False,
                reason=ALREADY_USED,
                usage_record=usage.usage_record,
            )
        return Eligibility(
            eligible=True,
            discount_percent=config.MEMBER_DISCOUNT_PERCENT[tier.value],
        )

    async def record_member_discount_usage(
        self, *, email: str, session_id: str, city_id: str, ticket_type,
        quantity: int, discount_amount_cents: int, original_amount_cents: int,
        final_amount_cents: int, customer_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RecordResult:
        """Record a used discount after payment. At most one per email."""
        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            return RecordResult.fail(
                ErrorCode.INVALID_INPUT, "A valid email address is required",
            )
        if not session_id or not city_id:
            return RecordResult.fail(
                ErrorCode.INVALID_INPUT, "session_id and city_id are required",
            )
        try:
            tier = parse_tier(ticket_type)
        except InvalidInputError as e:
            return RecordResult.fail(e.code, e.message)
        if not is_positive_int(quantity):
            return RecordResult.fail(
                ErrorCode.INVALID_INPUT, "quantity must be a positive integer",
            )
        bad = _non_negative_cents(
            discount_amount_cents=discount_amount_cents,
            original_amount_cents=original_amount_cents,
            final_amount_cents=final_amount_cents,
        )
        if bad:
            return RecordResult.fail(ErrorCode.INVALID_INPUT, bad)

        log = logger.bind(email=normalized, session_id=session_id)

        # The read below only gives a friendlier early answer. Two concurrent
        # calls can both see "no record"; the conditional insert decides.
        try:
            existing = await self._lookup(normalized)
        except StoreError as e:
            log.error(f"discount usage lookup failed: {e}")
            return RecordResult.fail(ErrorCode.STORE_ERROR, e.message)
        if existing is not None:
            log.warning("discount already used; not recording")
            return RecordResult.fail(
                ErrorCode.DISCOUNT_ALREADY_USED, ALREADY_USED,
            )

        record = MemberDiscountUsage(
            id=new_id("mdu"),
            email=normalized,
            session_id=session_id,
            city_id=city_id,
            ticket_type=tier.value,
            quantity=quantity,
            discount_amount_cents=discount_amount_cents,
            original_amount_cents=original_amount_cents,
            final_amount_cents=final_amount_cents,
            used_at=now_ts(),
            customer_id=customer_id,
            payment_intent_id=payment_intent_id,
            metadata=dict(metadata or {}),
        )
        try:
            async with timeit("discount.record"):
                inserted = await self.store.insert_if_absent(record)
        except StoreError as e:
            log.error(f"discount usage insert failed: {e}")
            return RecordResult.fail(ErrorCode.STORE_ERROR, e.message)
        if not inserted:
            log.warning("concurrent discount use lost the insert race")
            return RecordResult.fail(
                ErrorCode.DISCOUNT_ALREADY_USED, ALREADY_USED,
            )
        log.info(
            f"member discount recorded: {discount_amount_cents} cents off "
            f"{tier.value} x{quantity} in {city_id}"
        )
        return RecordResult.ok(usage_id=record.id)

    async def get_member_discount_usage_stats(
        self, start: TimeBound = None, end: TimeBound = None,
        city_id: Optional[str] = None, limit: int = 100, offset: int = 0,
    ) -> UsageStats:
        if not is_positive_int(limit):
            raise InvalidInputError("limit must be a positive integer")
        if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
            raise InvalidInputError("offset must be a non-negative integer")
        return await self.store.query(
            start=_as_ts(start), end=_as_ts(end), city_id=city_id,
            limit=limit, offset=offset,
        )

    async def reset_member_discount_usage(
        self, email: str, admin_reason: str,
        authorized_by: Optional[str] = None,
    ) -> Result:
        """Admin override: delete the usage record so the member may use
        the discount again. The reset itself is kept in the reset log."""
        if not isinstance(admin_reason, str) or not admin_reason.strip():
            return Result.fail(
                ErrorCode.INVALID_INPUT, "An admin reason is required",
            )
        normalized = normalize_email(email)
        if not normalized:
            return Result.fail(ErrorCode.INVALID_INPUT, "email is required")

        reset = DiscountReset(
            id=new_id("mdr"),
            email=normalized,
            reason=admin_reason.strip(),
            authorized_by=authorized_by,
            reset_at=now_ts(),
        )
        deleted = await self.store.delete_usage(normalized, reset)
        if deleted is None:
            return Result.fail(
                ErrorCode.NO_USAGE_RECORD,
                f"No discount usage recorded for {normalized}",
            )
        logger.bind(email=normalized).warning(
            f"member discount usage reset by {authorized_by or 'unknown'}: "
            f"{reset.reason} (deleted {deleted.id})"
        )
        return Result.ok()

    async def get_discount_resets(self, email: Optional[str] = None):
        return await self.store.list_resets(
            normalize_email(email) if email else None
        )
