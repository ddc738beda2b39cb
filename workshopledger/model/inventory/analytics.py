# model/inventory/analytics.py
"""Dashboard numbers derived from a status snapshot. No state, no I/O."""

from __future__ import annotations
import os
from typing import Any, Dict, List, Sequence

from ... import config
from ...helpers import now_ts, to_iso
from .types import InventoryStatus, Tier


def _pct(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _below(status: InventoryStatus, thresholds: Dict[str, int]) -> bool:
    return (
        status.public_available.ga <= thresholds[Tier.GA.value]
        or status.public_available.vip <= thresholds[Tier.VIP.value]
    )


def alert_buckets(statuses: Sequence[InventoryStatus]) -> Dict[str, List[str]]:
    return {
        "critical_cities": [
            s.city_id for s in statuses
            if _below(s, config.CRITICAL_THRESHOLD)
        ],
        "low_inventory_cities": [
            s.city_id for s in statuses
            if _below(s, config.LOW_THRESHOLD)
        ],
        "sold_out_cities": [
            s.city_id for s in statuses if s.is_public_sold_out
        ],
    }


def inventory_summary(statuses: Sequence[InventoryStatus]) -> Dict[str, Any]:
    return {
        "total_cities": len(statuses),
        "sold_out_cities": sum(1 for s in statuses if s.is_public_sold_out),
        "low_inventory_cities": sum(
            1 for s in statuses if _below(s, config.LOW_THRESHOLD)
        ),
        "timestamp": to_iso(now_ts()),
    }


def generate_inventory_analytics(
    statuses: Sequence[InventoryStatus],
) -> Dict[str, Any]:
    total_capacity = {
        "ga": sum(s.actual_limits.ga for s in statuses),
        "vip": sum(s.actual_limits.vip for s in statuses),
    }
    total_sold = {
        "ga": sum(s.sold.ga for s in statuses),
        "vip": sum(s.sold.vip for s in statuses),
    }
    # equals city count x public limit while every city uses the default
    total_public = {
        "ga": sum(s.public_limits.ga for s in statuses),
        "vip": sum(s.public_limits.vip for s in statuses),
    }
    return {
        "total_capacity": total_capacity,
        "total_sold": total_sold,
        "total_public_capacity": total_public,
        "sell_through_pct": {
            t: _pct(total_sold[t], total_public[t]) for t in ("ga", "vip")
        },
        "city_breakdown": [
            {
                "city_id": s.city_id,
                "fill_rate_pct": {
                    "ga": _pct(s.sold.ga, s.actual_limits.ga),
                    "vip": _pct(s.sold.vip, s.actual_limits.vip),
                },
                "is_expanded": (
                    s.actual_limits.ga > s.public_limits.ga
                    or s.actual_limits.vip > s.public_limits.vip
                ),
                "expansion_amount": {
                    "ga": max(0, s.actual_limits.ga - s.public_limits.ga),
                    "vip": max(0, s.actual_limits.vip - s.public_limits.vip),
                },
            }
            for s in statuses
        ],
        "alerts": alert_buckets(statuses),
    }


def alert_config() -> Dict[str, Any]:
    return {
        "ga_thresholds": list(config.GA_ALERT_LADDER),
        "vip_thresholds": list(config.VIP_ALERT_LADDER),
        "critical_level": dict(config.CRITICAL_THRESHOLD),
        "warning_level": dict(config.LOW_THRESHOLD),
        "notification_channels": {
            "sms": bool(os.getenv("TEAM_ALERT_PHONE")),
            "slack": bool(os.getenv("SLACK_INVENTORY_WEBHOOK")),
            "email": bool(os.getenv("ADMIN_EMAIL")),
        },
    }
