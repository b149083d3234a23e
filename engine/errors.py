"""
Error taxonomy for the exchange.

Every failure a caller can trigger is a TradingError carrying:
- kind: ErrorKind tag (stable, switchable by adapters)
- message: human readable text for the chat/CLI layer
- details: structured fields (amounts in cents, ids, quantities)

Errors are raised before any state is touched; nothing is retried internally.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


def _dollars(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


class ErrorKind(Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_POSITION = "insufficient_position"
    MARKET_ALREADY_EXISTS = "market_already_exists"
    MARKET_RESOLVED = "market_resolved"
    ALREADY_RESOLVED = "already_resolved"
    PARTIAL_FILL_REJECTED = "partial_fill_rejected"


class TradingError(Exception):
    """Base class for all recoverable exchange errors."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": dict(self.details)}


class InvalidInputError(TradingError):
    kind = ErrorKind.INVALID_INPUT

    def __init__(self, field: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid {field} {value!r}: {reason}",
            {"field": field, "value": value, "reason": reason},
        )


class NotFoundError(TradingError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, key: Any) -> None:
        super().__init__(f"{entity.capitalize()} not found: {key}", {"entity": entity, "key": key})


class InsufficientFundsError(TradingError):
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, needed_cents: int, available_cents: int) -> None:
        super().__init__(
            f"Insufficient balance: need {_dollars(needed_cents)}, "
            f"have {_dollars(available_cents)}",
            {"needed_cents": needed_cents, "available_cents": available_cents},
        )

    @property
    def needed_cents(self) -> int:
        return self.details["needed_cents"]

    @property
    def available_cents(self) -> int:
        return self.details["available_cents"]


class InsufficientPositionError(TradingError):
    kind = ErrorKind.INSUFFICIENT_POSITION

    def __init__(self, outcome_id: str, needed: int, available: int) -> None:
        super().__init__(
            f"Insufficient position in outcome {outcome_id}: need {needed} shares, have {available}",
            {"outcome_id": outcome_id, "needed": needed, "available": available},
        )

    @property
    def needed(self) -> int:
        return self.details["needed"]

    @property
    def available(self) -> int:
        return self.details["available"]


class MarketAlreadyExistsError(TradingError):
    kind = ErrorKind.MARKET_ALREADY_EXISTS

    def __init__(self, market_id: str) -> None:
        super().__init__(f"Market already exists: {market_id}", {"market_id": market_id})


class MarketResolvedError(TradingError):
    kind = ErrorKind.MARKET_RESOLVED

    def __init__(self, market_id: str) -> None:
        super().__init__(f"Cannot trade on resolved market: {market_id}", {"market_id": market_id})


class AlreadyResolvedError(TradingError):
    kind = ErrorKind.ALREADY_RESOLVED

    def __init__(self, market_id: str) -> None:
        super().__init__(f"Market already resolved: {market_id}", {"market_id": market_id})


class PartialFillRejectedError(TradingError):
    kind = ErrorKind.PARTIAL_FILL_REJECTED

    def __init__(self, requested: int, fillable: int) -> None:
        super().__init__(
            f"Only {fillable} of {requested} units could be filled",
            {"requested": requested, "fillable": fillable},
        )

    @property
    def requested(self) -> int:
        return self.details["requested"]

    @property
    def fillable(self) -> int:
        return self.details["fillable"]
