"""
Ledger: the single source of truth for cash and shares.

State per user:
- balance in int cents (free cash; escrowed cash is not included)
- positions: market_id -> outcome_id -> shares (free shares; escrowed
  shares sit in resting asks)

Accounts are created lazily on first touch with the configured starting
balance and are never deleted.

Escrow discipline:
- Buy order placement: hold price x qty cash before the bid is queued
- Sell order placement: hold qty shares before the ask is queued
- Match settlement: seller gets price x qty, buyer gets the shares plus a
  refund of (limit - price) x qty
- Cancel / resolution: release exactly what the remaining quantity held

Every check happens before the first mutation, so a failed call leaves the
ledger untouched.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any, DefaultDict, Dict, Iterable, List, Optional, Union

from .errors import InsufficientFundsError, InsufficientPositionError, InvalidInputError
from .matching_engine import Match
from .money import to_cents, to_dollars

DEFAULT_STARTING_BALANCE_CENTS = 100_000

Positions = Dict[str, Dict[str, int]]


class Ledger:
    def __init__(self, starting_balance_cents: int = DEFAULT_STARTING_BALANCE_CENTS):
        if starting_balance_cents < 0:
            raise ValueError("starting_balance_cents must be >= 0")
        self.starting_balance_cents = starting_balance_cents
        self._balances: Dict[str, int] = {}
        self._positions: Dict[str, DefaultDict[str, DefaultDict[str, int]]] = {}

    # ---------- accounts ----------

    def ensure_user(self, user_id: str) -> None:
        if not user_id:
            raise InvalidInputError("user", user_id, "cannot be empty")
        if user_id not in self._balances:
            self._balances[user_id] = self.starting_balance_cents
            self._positions[user_id] = defaultdict(lambda: defaultdict(int))

    def users(self) -> List[str]:
        return list(self._balances.keys())

    def has_user(self, user_id: str) -> bool:
        return user_id in self._balances

    # ---------- reads ----------

    def get_balance_cents(self, user_id: str) -> int:
        self.ensure_user(user_id)
        return max(0, self._balances[user_id])

    def get_balance(self, user_id: str) -> float:
        return to_dollars(self.get_balance_cents(user_id))

    def get_position(
        self, user_id: str, market_id: str, outcome_id: Optional[str] = None
    ) -> Union[int, Dict[str, int]]:
        self.ensure_user(user_id)
        market_pos = self._positions[user_id].get(market_id)
        if outcome_id is not None:
            return market_pos.get(str(outcome_id), 0) if market_pos else 0
        return dict(market_pos) if market_pos else {}

    def positions_in(self, market_id: str) -> Dict[str, Dict[str, int]]:
        """user -> outcome -> shares for every user holding anything in the market."""
        out: Dict[str, Dict[str, int]] = {}
        for user_id, markets in self._positions.items():
            market_pos = markets.get(market_id)
            if market_pos:
                out[user_id] = dict(market_pos)
        return out

    # ---------- cash ----------

    def require_cash(self, user_id: str, cents: int) -> None:
        available = self.get_balance_cents(user_id)
        if available < cents:
            raise InsufficientFundsError(needed_cents=cents, available_cents=available)

    def debit_cash(self, user_id: str, cents: int) -> None:
        self.require_cash(user_id, cents)
        self._balances[user_id] -= cents

    def credit_cash(self, user_id: str, cents: int) -> None:
        if cents < 0:
            raise ValueError("credit must be >= 0")
        self.ensure_user(user_id)
        self._balances[user_id] += cents

    # escrow is a debit/credit pair with a name that says what it is for
    hold_cash = debit_cash
    release_cash = credit_cash

    # ---------- shares ----------

    def require_shares(self, user_id: str, market_id: str, outcome_id: str, qty: int) -> None:
        available = self.get_position(user_id, market_id, outcome_id)
        if available < qty:
            raise InsufficientPositionError(outcome_id=str(outcome_id), needed=qty, available=available)

    def debit_shares(self, user_id: str, market_id: str, outcome_id: str, qty: int) -> None:
        self.require_shares(user_id, market_id, outcome_id, qty)
        self._positions[user_id][market_id][str(outcome_id)] -= qty

    def credit_shares(self, user_id: str, market_id: str, outcome_id: str, qty: int) -> None:
        if qty < 0:
            raise ValueError("credit must be >= 0")
        self.ensure_user(user_id)
        self._positions[user_id][market_id][str(outcome_id)] += qty

    hold_shares = debit_shares
    release_shares = credit_shares

    def require_bundle(self, user_id: str, market_id: str, outcome_ids: Iterable[str], qty: int) -> None:
        for oid in outcome_ids:
            self.require_shares(user_id, market_id, oid, qty)

    # ---------- settlement ----------

    def settle_match(self, market_id: str, outcome_id: str, match: Match) -> None:
        """
        Apply one match from the limit-order path.

        Both sides already escrowed: the buyer's cash at their limit, the
        seller's shares at placement.
        """
        self.credit_cash(match.seller_id, match.notional_cents)
        if match.price_improvement_cents > 0:
            self.credit_cash(match.buyer_id, match.price_improvement_cents)
        self.credit_shares(match.buyer_id, market_id, outcome_id, match.quantity)

    def clear_market(self, market_id: str) -> None:
        for markets in self._positions.values():
            markets.pop(market_id, None)

    # ---------- serialization ----------

    def balances_to_dict(self) -> Dict[str, float]:
        return {u: to_dollars(c) for u, c in self._balances.items()}

    def positions_to_dict(self) -> Dict[str, Positions]:
        return {
            u: {m: dict(outcomes) for m, outcomes in markets.items()}
            for u, markets in self._positions.items()
        }

    @staticmethod
    def from_dict(
        balances: Dict[str, Any],
        positions: Dict[str, Any],
        starting_balance_cents: int = DEFAULT_STARTING_BALANCE_CENTS,
    ) -> "Ledger":
        ledger = Ledger(starting_balance_cents)
        for user_id, dollars in (balances or {}).items():
            ledger.ensure_user(user_id)
            ledger._balances[user_id] = to_cents(dollars, field="balance")
        for user_id, markets in (positions or {}).items():
            ledger.ensure_user(user_id)
            for market_id, outcomes in (markets or {}).items():
                for outcome_id, qty in (outcomes or {}).items():
                    ledger._positions[user_id][market_id][str(outcome_id)] = int(qty)
        return ledger
