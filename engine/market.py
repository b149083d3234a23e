"""
Market metadata and the registry that owns every market.

A market is a set of mutually exclusive outcomes, each with its own order
book. Lifecycle is ACTIVE -> RESOLVED; RESOLVED is terminal.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import InvalidInputError, MarketAlreadyExistsError, NotFoundError
from .order_book import OrderBook


class MarketStatus(Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


@dataclass
class Outcome:
    outcome_id: str
    name: str
    book: OrderBook

    @property
    def last_trade_price(self) -> Optional[float]:
        return self.book.last_trade_price

    @property
    def volume(self) -> int:
        return self.book.volume


@dataclass
class Market:
    market_id: str
    description: str
    outcomes: Dict[str, Outcome]
    created_at: float = field(default_factory=time.time)
    status: MarketStatus = MarketStatus.ACTIVE
    winning_outcome: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.status is MarketStatus.RESOLVED

    def get_outcome(self, outcome_id: str) -> Outcome:
        outcome = self.outcomes.get(str(outcome_id))
        if outcome is None:
            raise NotFoundError("outcome", outcome_id)
        return outcome

    def books(self) -> Iterable[Tuple[str, OrderBook]]:
        for oid, outcome in self.outcomes.items():
            yield oid, outcome.book

    def mark_resolved(self, winning_outcome: str) -> None:
        self.status = MarketStatus.RESOLVED
        self.winning_outcome = winning_outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.market_id,
            "description": self.description,
            "outcomes": {
                oid: {"name": o.name, "orderBook": o.book.to_dict()}
                for oid, o in self.outcomes.items()
            },
            "created": self.created_at,
            "resolved": self.resolved,
            "winningOutcome": self.winning_outcome,
        }

    @staticmethod
    def from_dict(market_id: str, d: Dict[str, Any]) -> "Market":
        outcomes: Dict[str, Outcome] = {}
        for oid, od in (d.get("outcomes") or {}).items():
            oid = str(oid)
            book_d = od.get("orderBook")
            book = OrderBook.from_dict(book_d, outcome_id=oid) if book_d else OrderBook(oid)
            outcomes[oid] = Outcome(outcome_id=oid, name=str(od.get("name", oid)), book=book)

        resolved = bool(d.get("resolved", False))
        return Market(
            market_id=str(d.get("id", market_id)),
            description=str(d.get("description", "")),
            outcomes=outcomes,
            created_at=float(d.get("created") or 0.0),
            status=MarketStatus.RESOLVED if resolved else MarketStatus.ACTIVE,
            winning_outcome=d.get("winningOutcome"),
        )


def _normalize_outcomes(outcomes: Iterable[Any]) -> List[Tuple[str, str]]:
    """
    Accepts plain names (ids become "0", "1", ...), (id, name) pairs or
    {"id": ..., "name": ...} mappings.
    """
    out: List[Tuple[str, str]] = []
    for index, item in enumerate(outcomes):
        if isinstance(item, Mapping):
            name = str(item.get("name") or item.get("id") or "")
            oid = str(item.get("id") if item.get("id") is not None else index)
        elif isinstance(item, (tuple, list)) and len(item) == 2:
            oid, name = str(item[0]), str(item[1])
        else:
            oid, name = str(index), str(item)
        if not name.strip():
            raise InvalidInputError("outcome", item, "name cannot be empty")
        out.append((oid, name.strip()))
    return out


class MarketRegistry:
    """Owns every Market, keyed by id, in creation order."""

    def __init__(self):
        self._markets: Dict[str, Market] = {}

    def create(self, market_id: str, description: str, outcomes: Iterable[Any]) -> Market:
        if not market_id or not str(market_id).strip():
            raise InvalidInputError("market_id", market_id, "cannot be empty")
        market_id = str(market_id).strip()
        if market_id in self._markets:
            raise MarketAlreadyExistsError(market_id)

        pairs = _normalize_outcomes(outcomes)
        if len(pairs) < 2:
            raise InvalidInputError("outcomes", [n for _, n in pairs], "a market needs at least two outcomes")
        ids = [oid for oid, _ in pairs]
        if len(set(ids)) != len(ids):
            raise InvalidInputError("outcomes", ids, "outcome ids must be unique")

        market = Market(
            market_id=market_id,
            description=description,
            outcomes={oid: Outcome(oid, name, OrderBook(oid)) for oid, name in pairs},
        )
        self._markets[market_id] = market
        return market

    def add(self, market: Market) -> None:
        self._markets[market.market_id] = market

    def get(self, market_id: str) -> Market:
        market = self._markets.get(market_id)
        if market is None:
            raise NotFoundError("market", market_id)
        return market

    def get_outcome(self, market_id: str, outcome_id: str) -> Outcome:
        return self.get(market_id).get_outcome(outcome_id)

    def __contains__(self, market_id: object) -> bool:
        return market_id in self._markets

    def __len__(self) -> int:
        return len(self._markets)

    def list(self) -> List[Market]:
        return list(self._markets.values())
