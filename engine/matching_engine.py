"""
Continuous double auction for one outcome's order book.

Matching semantics:
- Price priority: best prices match first
- Time priority: within a price level, earliest arrival first (FIFO)
- Execution price: the resting (older) order's price; the newer order gets
  any price improvement
- Arrival order is the book-local order_id, which is strictly increasing
- Matching runs to exhaustion, so the book is never left crossed

Self-trades are allowed: a user's new order may fill against their own
resting order.

Market sweeps walk the opposite side best-first and report one Match per
resting order touched. preview() runs the same walk without mutation so the
caller can validate a sweep before committing it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import TYPE_CHECKING, List, Optional, Tuple

from .money import to_dollars

if TYPE_CHECKING:
    from .order_book import Order, OrderBook


@dataclass(frozen=True)
class Match:
    """
    One execution between a buyer and a seller.

    buyer_limit_cents is the price the buyer escrowed at; the difference to
    price_cents is refunded to the buyer on settlement.
    """
    buyer_id: str
    seller_id: str
    price_cents: int
    quantity: int
    buyer_limit_cents: int
    timestamp: float
    buy_order_id: Optional[int] = None
    sell_order_id: Optional[int] = None

    def __post_init__(self):
        assert self.quantity > 0, "Quantity must be positive"
        assert self.price_cents > 0, "Price must be positive"
        assert self.buyer_limit_cents >= self.price_cents, "Buyer limit below execution price"

    @property
    def price(self) -> float:
        return to_dollars(self.price_cents)

    @property
    def buyer_limit(self) -> float:
        return to_dollars(self.buyer_limit_cents)

    @property
    def notional_cents(self) -> int:
        return self.price_cents * self.quantity

    @property
    def price_improvement_cents(self) -> int:
        return (self.buyer_limit_cents - self.price_cents) * self.quantity


@dataclass(frozen=True)
class SweepResult:
    matches: List[Match] = field(default_factory=list)
    remaining: int = 0

    @property
    def filled(self) -> int:
        return sum(m.quantity for m in self.matches)

    @property
    def total_cents(self) -> int:
        return sum(m.notional_cents for m in self.matches)


class MatchingEngine:
    def __init__(self, order_book: "OrderBook"):
        self.book = order_book

    def _pop_filled(self, side: str, price_cents: int) -> None:
        levels = self.book.bids if side == "buy" else self.book.asks
        queue = levels[price_cents]
        removed = queue.popleft()
        self.book.index_remove(removed)
        if not queue:
            levels.pop(price_cents, None)

    def match_orders(self) -> List[Match]:
        """
        Execute crossing orders until the spread reopens or a side empties.

        Restartable: each call starts from the current book state.
        """
        matches: List[Match] = []

        while True:
            best_bid = self.book.best_bid_cents()
            best_ask = self.book.best_ask_cents()
            if best_bid is None or best_ask is None:
                break
            if best_bid < best_ask:
                break  # spread exists

            bid_order = self.book.bids[best_bid][0]
            ask_order = self.book.asks[best_ask][0]

            # Older order is resting; trade at its price.
            if bid_order.order_id < ask_order.order_id:
                execution_price = bid_order.price_cents
            else:
                execution_price = ask_order.price_cents

            match_qty = min(bid_order.quantity, ask_order.quantity)
            matches.append(
                Match(
                    buyer_id=bid_order.user_id,
                    seller_id=ask_order.user_id,
                    price_cents=execution_price,
                    quantity=match_qty,
                    buyer_limit_cents=bid_order.price_cents,
                    timestamp=time.time(),
                    buy_order_id=bid_order.order_id,
                    sell_order_id=ask_order.order_id,
                )
            )
            self.book.record_trade(execution_price, match_qty)

            bid_order.quantity -= match_qty
            ask_order.quantity -= match_qty

            if bid_order.quantity == 0:
                self._pop_filled("buy", best_bid)
            if ask_order.quantity == 0:
                self._pop_filled("sell", best_ask)

        return matches

    def _plan(self, side: str, quantity: int) -> Tuple[List[Tuple["Order", int]], int]:
        """(resting order, fill qty) pairs a sweep would consume, plus the unfilled rest."""
        resting_side = "sell" if side == "buy" else "buy"
        plan: List[Tuple["Order", int]] = []
        remaining = quantity
        for resting in self.book.iter_orders(resting_side):
            if remaining == 0:
                break
            fill_qty = min(remaining, resting.quantity)
            plan.append((resting, fill_qty))
            remaining -= fill_qty
        return plan, remaining

    def _sweep_match(self, side: str, resting: "Order", fill_qty: int, user_id: str) -> Match:
        now = time.time()
        if side == "buy":
            return Match(
                buyer_id=user_id,
                seller_id=resting.user_id,
                price_cents=resting.price_cents,
                quantity=fill_qty,
                buyer_limit_cents=resting.price_cents,
                timestamp=now,
                sell_order_id=resting.order_id,
            )
        return Match(
            buyer_id=resting.user_id,
            seller_id=user_id,
            price_cents=resting.price_cents,
            quantity=fill_qty,
            buyer_limit_cents=resting.price_cents,
            timestamp=now,
            buy_order_id=resting.order_id,
        )

    def preview(self, side: str, quantity: int, user_id: str = "preview") -> SweepResult:
        plan, remaining = self._plan(side, quantity)
        matches = [self._sweep_match(side, resting, qty, user_id) for resting, qty in plan]
        return SweepResult(matches=matches, remaining=remaining)

    def sweep(self, side: str, quantity: int, user_id: str) -> SweepResult:
        plan, remaining = self._plan(side, quantity)
        resting_side = "sell" if side == "buy" else "buy"

        matches: List[Match] = []
        for resting, fill_qty in plan:
            matches.append(self._sweep_match(side, resting, fill_qty, user_id))
            self.book.record_trade(resting.price_cents, fill_qty)
            resting.quantity -= fill_qty
            if resting.quantity == 0:
                self._pop_filled(resting_side, resting.price_cents)

        return SweepResult(matches=matches, remaining=remaining)
