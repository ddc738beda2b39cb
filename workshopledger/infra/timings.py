# workshopledger/infra/timings.py
from __future__ import annotations
import os
import time
import statistics
from collections import deque
from typing import Deque, Dict, List

# ------------ hot path: append only ------------
# one ring per kind holding the newest MAX_SAMPLES; no locks, single-threaded
# event loop
MAX_SAMPLES = int(os.getenv("TIMINGS_MAX_SAMPLES", "10000"))
_TIMINGS: Dict[str, Deque[float]] = {}


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    ring = _TIMINGS.get(kind)
    if ring is None:
        ring = deque(maxlen=MAX_SAMPLES)
        _TIMINGS[kind] = ring
    ring.append(float(value))


class timeit:
    """async usage:
        async with timeit("inventory.decrement"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, now_ts() - self._t0)


# ------------ stats only when asked ------------

def _mean_std(values: Deque[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def aggregates() -> List[Dict[str, float]]:
    """One record per kind: {"kind","n","mean","std","max"} in seconds."""
    out = []
    for kind in sorted(_TIMINGS):
        vals = _TIMINGS[kind]
        mean, std = _mean_std(vals)
        out.append({
            "kind": kind,
            "n": len(vals),
            "mean": mean,
            "std": std,
            "max": max(vals) if vals else 0.0,
        })
    return out


def clear() -> None:
    _TIMINGS.clear()
