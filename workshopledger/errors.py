"""Error codes and result objects shared by both ledgers.

Expected business outcomes (sold out, discount already used, bad input on a
mutation) are returned as ``Result`` objects. Only store faults and
malformed read queries raise.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    DISCOUNT_ALREADY_USED = "DISCOUNT_ALREADY_USED"
    INVALID_INPUT = "INVALID_INPUT"
    STORE_ERROR = "STORE_ERROR"
    CITY_NOT_FOUND = "CITY_NOT_FOUND"
    NO_USAGE_RECORD = "NO_USAGE_RECORD"


class DomainError(Exception):
    """Base error carrying a code and a user-safe message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidInputError(DomainError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_INPUT, message)


class StoreError(DomainError):
    """The backing store failed; the outcome of a write is unknown."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.STORE_ERROR, message)


@dataclass(frozen=True)
class Result:
    success: bool
    code: Optional[ErrorCode] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, **kw):
        return cls(True, **kw)

    @classmethod
    def fail(cls, code: ErrorCode, error: str, **kw):
        return cls(False, code, error, **kw)

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        if self.code is not None:
            out["code"] = self.code.value
        return out
