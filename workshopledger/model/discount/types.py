from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...errors import Result
from ...helpers import to_iso


@dataclass(frozen=True)
class MemberDiscountUsage:
    id: str
    email: str  # normalized
    session_id: str
    city_id: str
    ticket_type: str  # ga | vip
    quantity: int
    discount_amount_cents: int
    original_amount_cents: int
    final_amount_cents: int
    used_at: float
    customer_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        """Storage form: raw epoch timestamp."""
        return {
            "id": self.id,
            "email": self.email,
            "session_id": self.session_id,
            "city_id": self.city_id,
            "ticket_type": self.ticket_type,
            "quantity": self.quantity,
            "discount_amount_cents": self.discount_amount_cents,
            "original_amount_cents": self.original_amount_cents,
            "final_amount_cents": self.final_amount_cents,
            "used_at": self.used_at,
            "customer_id": self.customer_id,
            "payment_intent_id": self.payment_intent_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, d: Dict[str, Any]) -> "MemberDiscountUsage":
        meta = d.get("metadata") or {}
        return cls(
            id=d["id"],
            email=d["email"],
            session_id=d["session_id"],
            city_id=d["city_id"],
            ticket_type=d["ticket_type"],
            quantity=int(d["quantity"]),
            discount_amount_cents=int(d["discount_amount_cents"]),
            original_amount_cents=int(d["original_amount_cents"]),
            final_amount_cents=int(d["final_amount_cents"]),
            used_at=float(d["used_at"]),
            customer_id=d.get("customer_id"),
            payment_intent_id=d.get("payment_intent_id"),
            metadata=meta if isinstance(meta, dict) else {},
        )

    def as_dict(self) -> Dict[str, Any]:
        out = self.to_record()
        out["used_at"] = to_iso(self.used_at)
        return out


@dataclass(frozen=True)
class DiscountReset:
    id: str
    email: str
    reason: str
    authorized_by: Optional[str]
    reset_at: float
    deleted_usage_id: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "reason": self.reason,
            "authorized_by": self.authorized_by,
            "reset_at": self.reset_at,
            "deleted_usage_id": self.deleted_usage_id,
        }

    @classmethod
    def from_record(cls, d: Dict[str, Any]) -> "DiscountReset":
        return cls(
            id=d["id"],
            email=d["email"],
            reason=d["reason"],
            authorized_by=d.get("authorized_by"),
            reset_at=float(d["reset_at"]),
            deleted_usage_id=d.get("deleted_usage_id"),
        )

    def as_dict(self) -> Dict[str, Any]:
        out = self.to_record()
        out["reset_at"] = to_iso(self.reset_at)
        return out


@dataclass(frozen=True)
class DiscountUsageCheck:
    has_used_discount: bool
    usage_record: Optional[MemberDiscountUsage] = None


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: Optional[str] = None
    usage_record: Optional[MemberDiscountUsage] = None
    discount_percent: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "reason": self.reason,
            "usage_record": (
                self.usage_record.as_dict() if self.usage_record else None
            ),
            "discount_percent": self.discount_percent,
        }


@dataclass(frozen=True)
class RecordResult(Result):
    usage_id: Optional[str] = None


@dataclass(frozen=True)
class UsageStats:
    records: List[MemberDiscountUsage]
    total_count: int
    total_discount_given: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "records": [r.as_dict() for r in self.records],
            "total_count": self.total_count,
            "total_discount_given": self.total_discount_given,
        }
