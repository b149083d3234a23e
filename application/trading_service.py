"""
Trading service: the one entry point for every trading intent.

Each call runs to completion under a single re-entrant lock:
validate -> escrow -> mutate book -> settle matches -> emit event.
Validation always finishes before the first mutation, so a raised
TradingError means nothing changed.

Market orders are checked against a preview of the sweep first; if the
book cannot fill the whole quantity the call fails with
PartialFillRejectedError and neither the book nor the ledger is touched.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
import time
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple, Union

from engine.errors import (
    AlreadyResolvedError,
    InvalidInputError,
    MarketResolvedError,
    PartialFillRejectedError,
)
from engine.market import Market, Outcome
from engine.matching_engine import Match
from engine.money import CENTS_PER_DOLLAR, Amount, parse_price, to_cents, to_dollars, validate_quantity
from engine.order_book import BUY, SELL, Order
from infrastructure.config import ExchangeConfig
from infrastructure.logger import get_logger

from .store import MarketStore

logger = get_logger(__name__)


class EventType(Enum):
    MARKET_CREATED = "market_created"
    ORDER_PLACED = "order_placed"
    MARKET_ORDER = "market_order"
    TRADE = "trade"
    BUNDLE_BOUGHT = "bundle_bought"
    BUNDLE_SOLD = "bundle_sold"
    ORDER_CANCELLED = "order_cancelled"
    MARKET_RESOLVED = "market_resolved"


@dataclass(frozen=True)
class MarketEvent:
    timestamp: float
    event_type: EventType
    data: Dict[str, Any]
    message: str


# ---------------- Result types ----------------

@dataclass(frozen=True)
class OrderView:
    """Read-only copy of an order at the moment the call returned."""
    order_id: int
    market_id: str
    outcome_id: str
    user_id: str
    side: str
    price: float
    quantity: int             # remaining on the book (0 when fully filled)
    original_quantity: int
    timestamp: float

    @property
    def filled_quantity(self) -> int:
        return self.original_quantity - self.quantity

    @property
    def is_resting(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class OrderResult:
    order: OrderView
    matches: List[Match] = field(default_factory=list)


@dataclass(frozen=True)
class MarketOrderResult:
    market_id: str
    outcome_id: str
    side: str
    quantity: int
    matches: List[Match]
    total_cents: int

    @property
    def total(self) -> float:
        """Total paid (buy) or received (sell), in dollars."""
        return to_dollars(self.total_cents)

    @property
    def average_price(self) -> float:
        return round(self.total_cents / self.quantity / CENTS_PER_DOLLAR, 4)


@dataclass(frozen=True)
class BundleResult:
    market_id: str
    quantity: int
    amount_cents: int

    @property
    def amount(self) -> float:
        return to_dollars(self.amount_cents)


@dataclass(frozen=True)
class CancelResult:
    order: OrderView
    refunded_cents: int = 0
    returned_shares: int = 0

    @property
    def refunded(self) -> float:
        return to_dollars(self.refunded_cents)


@dataclass(frozen=True)
class ResolutionResult:
    market_id: str
    winning_outcome: str
    payouts: Dict[str, float]          # user -> dollars paid
    refunded_orders: int


@dataclass(frozen=True)
class OutcomeInfo:
    outcome_id: str
    name: str
    bids: List[tuple]
    asks: List[tuple]
    best_bid: Optional[float]
    best_ask: Optional[float]
    last_price: Optional[float]
    volume: int


@dataclass(frozen=True)
class MarketInfo:
    market_id: str
    description: str
    outcomes: Dict[str, OutcomeInfo]
    total_best_bids: float
    total_best_asks: float
    bundle_price: float
    resolved: bool
    winning_outcome: Optional[str]
    created_at: float


@dataclass(frozen=True)
class MarketSummary:
    market_id: str
    description: str
    num_outcomes: int
    resolved: bool


@dataclass(frozen=True)
class UserOrder:
    order_id: int
    outcome_id: str
    outcome_name: str
    side: str
    price: float
    quantity: int
    timestamp: float


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    cash: float
    holdings: float

    @property
    def total(self) -> float:
        return round(self.cash + self.holdings, 2)


def _view(order: Order, market_id: str, outcome_id: str, original_quantity: int) -> OrderView:
    return OrderView(
        order_id=order.order_id,
        market_id=market_id,
        outcome_id=outcome_id,
        user_id=order.user_id,
        side=order.side,
        price=order.price,
        quantity=order.quantity,
        original_quantity=original_quantity,
        timestamp=order.timestamp,
    )


def _parse_order_id(order_id: Any) -> int:
    if isinstance(order_id, bool):
        raise InvalidInputError("order_id", order_id, "must be an integer")
    try:
        return int(order_id)
    except (TypeError, ValueError):
        raise InvalidInputError("order_id", order_id, "must be an integer") from None


class TradingService:
    """
    Orchestrates markets, books and the ledger.

    Thread-safety:
    - Every public method holds one RLock for its whole duration (single
      writer), so escrow check-then-mutate sequences are atomic.
    - Queries return immutable copies, never live book/ledger objects.
    """

    def __init__(self, config: Optional[ExchangeConfig] = None, store: Optional[MarketStore] = None):
        self.config = config or ExchangeConfig.DEFAULT()
        self.store = store or MarketStore.empty(self.config)
        self._bundle_cents = to_cents(self.store.bundle_price, field="bundle_price")

        self._lock = RLock()
        self.events: Deque[MarketEvent] = deque(maxlen=self.config.event_history)
        self._event_subscribers: List[Callable[[MarketEvent], None]] = []

    @property
    def ledger(self):
        return self.store.ledger

    @property
    def registry(self):
        return self.store.registry

    # ---------------- Subscription API ----------------

    def subscribe(self, callback: Callable[[MarketEvent], None]) -> Callable[[], None]:
        if not callable(callback):
            raise TypeError("Callback must be callable")
        with self._lock:
            self._event_subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._event_subscribers:
                    self._event_subscribers.remove(callback)

        return unsubscribe

    def snapshot_and_subscribe(
        self, callback: Callable[[MarketEvent], None]
    ) -> Tuple[Dict[str, Any], Callable[[], None]]:
        """Snapshot plus subscription taken atomically: callback sees every event after the snapshot."""
        with self._lock:
            return self.store.to_snapshot(), self.subscribe(callback)

    def _emit(self, event_type: EventType, data: Dict[str, Any], message: str) -> None:
        event = MarketEvent(timestamp=time.time(), event_type=event_type, data=data, message=message)
        self.events.append(event)
        for listener in list(self._event_subscribers):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in event listener for %s", event_type.value)

    def recent_events(self, limit: int = 20) -> List[MarketEvent]:
        with self._lock:
            return list(self.events)[-limit:]

    # ---------------- helpers (lock held) ----------------

    def _active_market(self, market_id: str) -> Market:
        market = self.registry.get(market_id)
        if market.resolved:
            raise MarketResolvedError(market_id)
        return market

    def _settle(self, market_id: str, outcome_id: str, matches: Iterable[Match]) -> None:
        for m in matches:
            self.ledger.settle_match(market_id, outcome_id, m)
            logger.info(
                "TRADE %s/%s %s buys %d from %s @ %.2f",
                market_id, outcome_id, m.buyer_id, m.quantity, m.seller_id, m.price,
            )
            self._emit(
                EventType.TRADE,
                {
                    "market": market_id,
                    "outcome": outcome_id,
                    "buyer": m.buyer_id,
                    "seller": m.seller_id,
                    "price": m.price,
                    "quantity": m.quantity,
                },
                f"{m.buyer_id} bought {m.quantity} of {outcome_id} from {m.seller_id} @ ${m.price:.2f}",
            )

    def _release(self, market_id: str, outcome_id: str, order: Order) -> None:
        if order.side == BUY:
            self.ledger.release_cash(order.user_id, order.escrow_cents)
        else:
            self.ledger.release_shares(order.user_id, market_id, outcome_id, order.quantity)

    # ---------------- Markets ----------------

    def create_market(self, market_id: str, description: str, outcomes: Iterable[Any]) -> MarketInfo:
        with self._lock:
            market = self.registry.create(market_id, description, outcomes)
            logger.info("Market %s created with %d outcomes", market.market_id, len(market.outcomes))
            self._emit(
                EventType.MARKET_CREATED,
                {
                    "market": market.market_id,
                    "description": description,
                    "outcomes": [[oid, o.name] for oid, o in market.outcomes.items()],
                },
                f"Market {market.market_id} created",
            )
            return self._market_info(market)

    def list_markets(self) -> List[MarketSummary]:
        with self._lock:
            return [
                MarketSummary(m.market_id, m.description, len(m.outcomes), m.resolved)
                for m in self.registry.list()
            ]

    # ---------------- Limit orders ----------------

    def place_buy_order(self, user_id: str, market_id: str, outcome_id: str, price: Amount, quantity: int) -> OrderResult:
        return self._place_limit_order(BUY, user_id, market_id, outcome_id, price, quantity)

    def place_sell_order(self, user_id: str, market_id: str, outcome_id: str, price: Amount, quantity: int) -> OrderResult:
        return self._place_limit_order(SELL, user_id, market_id, outcome_id, price, quantity)

    def _place_limit_order(
        self, side: str, user_id: str, market_id: str, outcome_id: str, price: Amount, quantity: int
    ) -> OrderResult:
        with self._lock:
            market = self._active_market(market_id)
            outcome: Outcome = market.get_outcome(outcome_id)
            price_cents = parse_price(price)
            quantity = validate_quantity(quantity)
            self.ledger.ensure_user(user_id)

            # Escrow first; raises before anything is queued.
            if side == BUY:
                self.ledger.hold_cash(user_id, price_cents * quantity)
                order = outcome.book.add_bid(price, quantity, user_id)
            else:
                self.ledger.hold_shares(user_id, market_id, outcome.outcome_id, quantity)
                order = outcome.book.add_ask(price, quantity, user_id)

            logger.info(
                "ORDER %s/%s #%d %s %s %d @ %.2f",
                market_id, outcome.outcome_id, order.order_id, user_id, side, quantity, order.price,
            )
            self._emit(
                EventType.ORDER_PLACED,
                {
                    "user": user_id,
                    "market": market_id,
                    "outcome": outcome.outcome_id,
                    "side": side,
                    "price": order.price,
                    "quantity": quantity,
                    "order_id": order.order_id,
                },
                f"{user_id} {side} {quantity} of {outcome.name} @ ${order.price:.2f}",
            )

            matches = outcome.book.match_orders()
            self._settle(market_id, outcome.outcome_id, matches)

            return OrderResult(order=_view(order, market_id, outcome.outcome_id, quantity), matches=matches)

    # ---------------- Market orders ----------------

    def market_buy(self, user_id: str, market_id: str, outcome_id: str, quantity: int) -> MarketOrderResult:
        return self._market_order(BUY, user_id, market_id, outcome_id, quantity)

    def market_sell(self, user_id: str, market_id: str, outcome_id: str, quantity: int) -> MarketOrderResult:
        return self._market_order(SELL, user_id, market_id, outcome_id, quantity)

    def _market_order(self, side: str, user_id: str, market_id: str, outcome_id: str, quantity: int) -> MarketOrderResult:
        with self._lock:
            market = self._active_market(market_id)
            outcome = market.get_outcome(outcome_id)
            oid = outcome.outcome_id
            quantity = validate_quantity(quantity)
            self.ledger.ensure_user(user_id)

            if side == SELL:
                self.ledger.require_shares(user_id, market_id, oid, quantity)

            preview = outcome.book.preview_sweep(side, quantity)
            if preview.remaining > 0:
                raise PartialFillRejectedError(requested=quantity, fillable=preview.filled)

            # Market buys pay execution prices directly; the cash moves up front.
            if side == BUY:
                self.ledger.debit_cash(user_id, preview.total_cents)
                result = outcome.book.market_buy(quantity, user_id)
            else:
                self.ledger.hold_shares(user_id, market_id, oid, quantity)
                result = outcome.book.market_sell(quantity, user_id)

            self._emit(
                EventType.MARKET_ORDER,
                {"user": user_id, "market": market_id, "outcome": oid, "side": side, "quantity": quantity},
                f"{user_id} market {side} {quantity} of {outcome.name}",
            )
            self._settle(market_id, oid, result.matches)

            return MarketOrderResult(
                market_id=market_id,
                outcome_id=oid,
                side=side,
                quantity=quantity,
                matches=result.matches,
                total_cents=result.total_cents,
            )

    # ---------------- Bundles ----------------

    def buy_bundle(self, user_id: str, market_id: str, quantity: int) -> BundleResult:
        """One share of every outcome per bundle, for exactly the bundle price."""
        with self._lock:
            market = self._active_market(market_id)
            quantity = validate_quantity(quantity)
            cost = self._bundle_cents * quantity

            self.ledger.debit_cash(user_id, cost)
            for oid in market.outcomes:
                self.ledger.credit_shares(user_id, market_id, oid, quantity)

            logger.info("BUNDLE %s buys %d bundles of %s", user_id, quantity, market_id)
            self._emit(
                EventType.BUNDLE_BOUGHT,
                {"user": user_id, "market": market_id, "quantity": quantity},
                f"{user_id} bought {quantity} bundles of {market_id}",
            )
            return BundleResult(market_id=market_id, quantity=quantity, amount_cents=cost)

    def sell_bundle(self, user_id: str, market_id: str, quantity: int) -> BundleResult:
        with self._lock:
            market = self._active_market(market_id)
            quantity = validate_quantity(quantity)

            # all-or-nothing: every outcome is checked before any is debited
            self.ledger.require_bundle(user_id, market_id, market.outcomes.keys(), quantity)
            for oid in market.outcomes:
                self.ledger.debit_shares(user_id, market_id, oid, quantity)
            revenue = self._bundle_cents * quantity
            self.ledger.credit_cash(user_id, revenue)

            logger.info("BUNDLE %s sells %d bundles of %s", user_id, quantity, market_id)
            self._emit(
                EventType.BUNDLE_SOLD,
                {"user": user_id, "market": market_id, "quantity": quantity},
                f"{user_id} sold {quantity} bundles of {market_id}",
            )
            return BundleResult(market_id=market_id, quantity=quantity, amount_cents=revenue)

    # ---------------- Cancel ----------------

    def cancel_order(self, user_id: str, market_id: str, outcome_id: str, order_id: Union[int, str]) -> CancelResult:
        with self._lock:
            outcome = self.registry.get_outcome(market_id, outcome_id)
            order_id = _parse_order_id(order_id)

            order = outcome.book.cancel_order(order_id, user_id)
            self._release(market_id, outcome.outcome_id, order)

            logger.info("CANCEL %s/%s #%d by %s", market_id, outcome.outcome_id, order_id, user_id)
            self._emit(
                EventType.ORDER_CANCELLED,
                {"user": user_id, "market": market_id, "outcome": outcome.outcome_id, "order_id": order_id},
                f"{user_id} cancelled order #{order_id}",
            )
            view = _view(order, market_id, outcome.outcome_id, order.quantity)
            if order.side == BUY:
                return CancelResult(order=view, refunded_cents=order.escrow_cents)
            return CancelResult(order=view, returned_shares=order.quantity)

    # ---------------- Resolution ----------------

    def resolve_market(self, market_id: str, winning_outcome: str) -> ResolutionResult:
        """
        Terminal transition ACTIVE -> RESOLVED.

        1. Release escrow of every resting order and clear the books
        2. Mark resolved and record the winner
        3. Pay $1 per winning share
        4. Drop every user's positions in this market
        """
        with self._lock:
            market = self.registry.get(market_id)
            if market.resolved:
                raise AlreadyResolvedError(market_id)
            winner = market.get_outcome(winning_outcome).outcome_id

            refunded = 0
            for oid, book in market.books():
                for order in book.clear():
                    self._release(market_id, oid, order)
                    refunded += 1

            market.mark_resolved(winner)

            payouts: Dict[str, float] = {}
            for user_id, outcomes in self.ledger.positions_in(market_id).items():
                shares = outcomes.get(winner, 0)
                if shares > 0:
                    payout = shares * CENTS_PER_DOLLAR
                    self.ledger.credit_cash(user_id, payout)
                    payouts[user_id] = to_dollars(payout)

            self.ledger.clear_market(market_id)

            logger.info(
                "Market %s resolved: winner=%s, %d orders refunded, %d users paid",
                market_id, winner, refunded, len(payouts),
            )
            self._emit(
                EventType.MARKET_RESOLVED,
                {"market": market_id, "winning_outcome": winner},
                f"Market {market_id} resolved to {market.outcomes[winner].name}",
            )
            return ResolutionResult(
                market_id=market_id,
                winning_outcome=winner,
                payouts=payouts,
                refunded_orders=refunded,
            )

    # ---------------- Queries ----------------

    def _market_info(self, market: Market) -> MarketInfo:
        outcomes: Dict[str, OutcomeInfo] = {}
        total_bids = 0
        total_asks = 0
        for oid, outcome in market.outcomes.items():
            book = outcome.book
            depth = book.get_depth(self.config.depth_levels)
            outcomes[oid] = OutcomeInfo(
                outcome_id=oid,
                name=outcome.name,
                bids=depth.bids,
                asks=depth.asks,
                best_bid=book.get_best_bid(),
                best_ask=book.get_best_ask(),
                last_price=depth.last_price,
                volume=depth.volume,
            )
            total_bids += book.best_bid_cents() or 0
            total_asks += book.best_ask_cents() or 0

        return MarketInfo(
            market_id=market.market_id,
            description=market.description,
            outcomes=outcomes,
            total_best_bids=to_dollars(total_bids),
            total_best_asks=to_dollars(total_asks),
            bundle_price=self.store.bundle_price,
            resolved=market.resolved,
            winning_outcome=market.winning_outcome,
            created_at=market.created_at,
        )

    def get_market_info(self, market_id: str) -> MarketInfo:
        with self._lock:
            return self._market_info(self.registry.get(market_id))

    def get_user_balance(self, user_id: str) -> float:
        with self._lock:
            return self.ledger.get_balance(user_id)

    def get_user_position(
        self, user_id: str, market_id: str, outcome_id: Optional[str] = None
    ) -> Union[int, Dict[str, int]]:
        with self._lock:
            market = self.registry.get(market_id)
            if outcome_id is not None:
                outcome_id = market.get_outcome(outcome_id).outcome_id
            return self.ledger.get_position(user_id, market_id, outcome_id)

    def get_user_orders(self, user_id: str, market_id: str) -> List[UserOrder]:
        """Open orders across every outcome of the market, newest first."""
        with self._lock:
            market = self.registry.get(market_id)
            out: List[UserOrder] = []
            for oid, outcome in market.outcomes.items():
                for o in outcome.book.get_orders_by_user(user_id):
                    out.append(
                        UserOrder(
                            order_id=o.order_id,
                            outcome_id=oid,
                            outcome_name=outcome.name,
                            side=o.side,
                            price=o.price,
                            quantity=o.quantity,
                            timestamp=o.timestamp,
                        )
                    )
            # order ids are per book; outcome_id keeps equal-timestamp ties across books deterministic
            out.sort(key=lambda u: (u.timestamp, u.order_id, u.outcome_id), reverse=True)
            return out

    def get_leaderboard(self, market_id: Optional[str] = None, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        """
        Rank users by marked value.

        Shares (held or escrowed in asks) are marked at the outcome's last
        trade price, or zero if it never traded. Escrowed bid cash counts as
        cash.
        - market_id=None: free cash + escrow + holdings across all markets
        - market_id given: escrowed bid cash + holdings in that market only
        """
        with self._lock:
            markets = [self.registry.get(market_id)] if market_id is not None else self.registry.list()

            cash: Dict[str, int] = {}
            holdings: Dict[str, int] = {}
            if market_id is None:
                for user_id in self.ledger.users():
                    cash[user_id] = self.ledger.get_balance_cents(user_id)

            for market in markets:
                positions = self.ledger.positions_in(market.market_id)
                for oid, outcome in market.outcomes.items():
                    mark = outcome.book.last_trade_price_cents or 0
                    for user_id, user_pos in positions.items():
                        shares = user_pos.get(oid, 0)
                        if shares:
                            holdings[user_id] = holdings.get(user_id, 0) + shares * mark
                            cash.setdefault(user_id, 0)
                    for o in outcome.book.all_orders():
                        cash.setdefault(o.user_id, 0)
                        if o.side == BUY:
                            cash[o.user_id] += o.escrow_cents
                        else:
                            holdings[o.user_id] = holdings.get(o.user_id, 0) + o.quantity * mark

            rows = sorted(
                cash.keys(),
                key=lambda u: (-(cash[u] + holdings.get(u, 0)), u),
            )
            if limit is not None:
                rows = rows[:limit]
            return [
                LeaderboardEntry(
                    rank=i + 1,
                    user_id=u,
                    cash=to_dollars(cash[u]),
                    holdings=to_dollars(holdings.get(u, 0)),
                )
                for i, u in enumerate(rows)
            ]

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self.store.to_snapshot()
