from __future__ import annotations

from dataclasses import dataclass, field
from collections import defaultdict, deque
import time
from typing import Any, DefaultDict, Deque, Dict, Iterator, List, Optional, Set, Tuple

from .errors import InvalidInputError, NotFoundError
from .matching_engine import Match, MatchingEngine, SweepResult
from .money import (
    MAX_PRICE_CENTS,
    MIN_PRICE_CENTS,
    Amount,
    parse_price,
    to_cents,
    to_dollars,
    validate_quantity,
)

BUY = "buy"
SELL = "sell"


@dataclass
class Order:
    order_id: int
    user_id: str
    side: str                 # 'buy' | 'sell'
    price_cents: int
    quantity: int             # remaining; mutates on partial fills
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if self.side not in (BUY, SELL):
            raise ValueError(f"side must be 'buy' or 'sell', got {self.side!r}")
        if not isinstance(self.quantity, int):
            raise ValueError("quantity must be int")
        if self.quantity <= 0:
            raise ValueError(f"quantity must be > 0, got {self.quantity}")
        if not (MIN_PRICE_CENTS <= self.price_cents <= MAX_PRICE_CENTS):
            raise ValueError(f"price_cents must be in [1, 99], got {self.price_cents}")

    @property
    def price(self) -> float:
        return to_dollars(self.price_cents)

    @property
    def escrow_cents(self) -> int:
        """Cash held for the remaining quantity of a bid."""
        return self.price_cents * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.order_id,
            "price": self.price,
            "quantity": self.quantity,
            "userId": self.user_id,
            "side": self.side,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Order":
        return Order(
            order_id=int(d["id"]),
            user_id=str(d["userId"]),
            side=str(d["side"]),
            price_cents=to_cents(d["price"], field="price"),
            quantity=int(d["quantity"]),
            timestamp=float(d.get("timestamp", 0.0)),
        )

    def __repr__(self) -> str:
        return f"Order(id={self.order_id}, user={self.user_id}, {self.side} {self.quantity}@{self.price:.2f})"


@dataclass(frozen=True)
class DepthSnapshot:
    bids: List[Tuple[float, int]]
    asks: List[Tuple[float, int]]
    last_price: Optional[float]
    volume: int


class OrderBook:
    """
    Resting orders for a single outcome.

    Storage:
    - price_cents -> deque FIFO at each level (stable arrival order)
    - order_id index for cancels
    - user_id -> set(order_id) index for per-user queries

    Ids are assigned from a book-local counter and never reused, including
    across snapshot reloads (next_order_id is persisted).

    The book holds no money. Callers escrow before adding an order and
    release escrow on cancel; matching only reports Match records.
    """

    def __init__(self, outcome_id: str = ""):
        self.outcome_id = outcome_id

        self.bids: DefaultDict[int, Deque[Order]] = defaultdict(deque)
        self.asks: DefaultDict[int, Deque[Order]] = defaultdict(deque)

        # Indices
        self._order_index: Dict[int, Tuple[str, int]] = {}            # order_id -> (side, price_cents)
        self._user_order_ids: DefaultDict[str, Set[int]] = defaultdict(set)

        self.next_order_id = 1
        self.last_trade_price_cents: Optional[int] = None
        self.volume = 0

        self._engine = MatchingEngine(self)

    # ---------- internal helpers ----------

    def _book_for_side(self, side: str) -> DefaultDict[int, Deque[Order]]:
        return self.bids if side == BUY else self.asks

    def _clean_empty_level(self, side: str, price_cents: int) -> None:
        book = self._book_for_side(side)
        q = book.get(price_cents)
        if q is not None and not q:
            del book[price_cents]

    def _index_add(self, order: Order) -> None:
        self._order_index[order.order_id] = (order.side, order.price_cents)
        self._user_order_ids[order.user_id].add(order.order_id)

    def index_remove(self, order: Order) -> None:
        self._order_index.pop(order.order_id, None)
        s = self._user_order_ids.get(order.user_id)
        if s is not None:
            s.discard(order.order_id)
            if not s:
                self._user_order_ids.pop(order.user_id, None)

    def _insert(self, order: Order) -> None:
        self._book_for_side(order.side)[order.price_cents].append(order)
        self._index_add(order)
        if order.order_id >= self.next_order_id:
            self.next_order_id = order.order_id + 1

    def _new_order(self, side: str, price: Amount, quantity: int, user_id: str) -> Order:
        price_cents = parse_price(price)
        quantity = validate_quantity(quantity)
        if not user_id:
            raise InvalidInputError("user", user_id, "cannot be empty")
        order = Order(
            order_id=self.next_order_id,
            user_id=user_id,
            side=side,
            price_cents=price_cents,
            quantity=quantity,
        )
        self.next_order_id += 1
        return order

    # ---------- order entry ----------

    def add_bid(self, price: Amount, quantity: int, user_id: str) -> Order:
        order = self._new_order(BUY, price, quantity, user_id)
        self._insert(order)
        return order

    def add_ask(self, price: Amount, quantity: int, user_id: str) -> Order:
        order = self._new_order(SELL, price, quantity, user_id)
        self._insert(order)
        return order

    def cancel_order(self, order_id: int, user_id: str) -> Order:
        loc = self._order_index.get(order_id)
        if loc is None:
            raise NotFoundError("order", order_id)

        side, price_cents = loc
        q = self._book_for_side(side).get(price_cents)
        target = None
        for o in q or ():
            if o.order_id == order_id:
                target = o
                break
        if target is None or target.user_id != user_id:
            raise NotFoundError("order", order_id)

        q.remove(target)
        self._clean_empty_level(side, price_cents)
        self.index_remove(target)
        return target

    # ---------- matching ----------

    def match_orders(self) -> List[Match]:
        return self._engine.match_orders()

    def market_buy(self, quantity: int, user_id: str) -> SweepResult:
        return self._engine.sweep(BUY, validate_quantity(quantity), user_id)

    def market_sell(self, quantity: int, user_id: str) -> SweepResult:
        return self._engine.sweep(SELL, validate_quantity(quantity), user_id)

    def preview_sweep(self, side: str, quantity: int) -> SweepResult:
        """What market_buy/market_sell would do, without touching the book."""
        return self._engine.preview(side, validate_quantity(quantity))

    def record_trade(self, price_cents: int, quantity: int) -> None:
        self.last_trade_price_cents = price_cents
        self.volume += quantity

    # ---------- queries ----------

    def best_bid_cents(self) -> Optional[int]:
        return max(self.bids.keys()) if self.bids else None

    def best_ask_cents(self) -> Optional[int]:
        return min(self.asks.keys()) if self.asks else None

    def get_best_bid(self) -> Optional[float]:
        bb = self.best_bid_cents()
        return None if bb is None else to_dollars(bb)

    def get_best_ask(self) -> Optional[float]:
        ba = self.best_ask_cents()
        return None if ba is None else to_dollars(ba)

    @property
    def last_trade_price(self) -> Optional[float]:
        if self.last_trade_price_cents is None:
            return None
        return to_dollars(self.last_trade_price_cents)

    def is_crossed(self) -> bool:
        bb, ba = self.best_bid_cents(), self.best_ask_cents()
        return bb is not None and ba is not None and bb >= ba

    def iter_orders(self, side: str) -> Iterator[Order]:
        """Resting orders of one side, best price first, FIFO within a level."""
        book = self._book_for_side(side)
        for price_cents in sorted(book.keys(), reverse=(side == BUY)):
            yield from list(book[price_cents])

    def all_orders(self) -> List[Order]:
        return list(self.iter_orders(BUY)) + list(self.iter_orders(SELL))

    def get_orders_by_user(self, user_id: str) -> List[Order]:
        ids = self._user_order_ids.get(user_id)
        if not ids:
            return []
        return [o for o in self.all_orders() if o.order_id in ids]

    def get_depth(self, levels: int = 5) -> DepthSnapshot:
        bid_prices = sorted(self.bids.keys(), reverse=True)[:levels]
        ask_prices = sorted(self.asks.keys())[:levels]

        bids = [(to_dollars(p), sum(o.quantity for o in self.bids[p])) for p in bid_prices]
        asks = [(to_dollars(p), sum(o.quantity for o in self.asks[p])) for p in ask_prices]
        return DepthSnapshot(bids=bids, asks=asks, last_price=self.last_trade_price, volume=self.volume)

    def get_total_quantity(self, side: str) -> int:
        book = self._book_for_side(side)
        return sum(sum(o.quantity for o in q) for q in book.values())

    def __len__(self) -> int:
        return len(self._order_index)

    def clear(self) -> List[Order]:
        """Drop every resting order and return them (caller releases escrow)."""
        removed = self.all_orders()
        self.bids.clear()
        self.asks.clear()
        self._order_index.clear()
        self._user_order_ids.clear()
        return removed

    # ---------- serialization ----------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcomeId": self.outcome_id,
            "bids": [o.to_dict() for o in self.iter_orders(BUY)],
            "asks": [o.to_dict() for o in self.iter_orders(SELL)],
            "lastPrice": self.last_trade_price,
            "volume": self.volume,
            "nextOrderId": self.next_order_id,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any], outcome_id: Optional[str] = None) -> "OrderBook":
        book = OrderBook(outcome_id if outcome_id is not None else str(d.get("outcomeId", "")))
        # Saved lists are best-first; re-sorting by id restores arrival order per level.
        orders = [Order.from_dict(x) for x in d.get("bids") or []]
        orders += [Order.from_dict(x) for x in d.get("asks") or []]
        for order in sorted(orders, key=lambda o: o.order_id):
            book._insert(order)

        last = d.get("lastPrice")
        book.last_trade_price_cents = None if last is None else to_cents(last, field="lastPrice")
        book.volume = int(d.get("volume") or 0)
        book.next_order_id = max(book.next_order_id, int(d.get("nextOrderId") or 1))
        return book
