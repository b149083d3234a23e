# ui/shell.py

from __future__ import annotations

import shlex
from typing import Callable, List, Optional

from application.journal import TransactionJournal
from application.trading_service import MarketInfo, TradingService
from engine.errors import TradingError
from infrastructure.logger import get_logger
from infrastructure.persistence import SnapshotStore

logger = get_logger(__name__)

PROMPT = "market> "

HELP = """Commands:
  create <market_id> <outcome1,outcome2,...> <description>
  buy <market_id> <outcome_id> <quantity> [price]     -> limit buy, or market buy without price
  sell <market_id> <outcome_id> <quantity> [price]    -> limit sell, or market sell without price
  bundle-buy <market_id> <quantity>
  bundle-sell <market_id> <quantity>
  cancel <market_id> <outcome_id> <order_id>
  orders <market_id>
  market <market_id>
  list
  balance
  position <market_id>
  resolve <market_id> <winning_outcome_id>
  leaderboard [market_id]
  user <user_id>                                      -> act as another user
  save
  help
  quit"""


def _fmt(x: Optional[float], fmt: str = "${:.2f}") -> str:
    return "-" if x is None else fmt.format(x)


def _fmt_levels(levels) -> str:
    if not levels:
        return "none"
    return ", ".join(f"${p:.2f}({q})" for p, q in levels)


def format_market(info: MarketInfo) -> str:
    lines: List[str] = [f"Market {info.market_id}: {info.description}"]
    if info.resolved:
        winner = info.outcomes.get(info.winning_outcome)
        lines.append(f"RESOLVED -> {winner.name if winner else info.winning_outcome}")
    for oid, o in info.outcomes.items():
        lines.append(f"{o.name} (ID: {oid})")
        lines.append(f"  Bids: {_fmt_levels(o.bids)}")
        lines.append(f"  Asks: {_fmt_levels(o.asks)}")
        lines.append(f"  Last: {_fmt(o.last_price)}, Volume: {o.volume}")
    lines.append(f"Sum of best bids: ${info.total_best_bids:.2f}")
    lines.append(f"Sum of best asks: ${info.total_best_asks:.2f}")
    return "\n".join(lines)


class CommandShell:
    """
    Line-oriented front end over TradingService.

    execute() turns one command line into output text; run() is the
    interactive read-eval-print loop around it.
    """

    def __init__(
        self,
        service: TradingService,
        user_id: str = "cli-user",
        snapshots: Optional[SnapshotStore] = None,
        journal: Optional[TransactionJournal] = None,
        journal_path: Optional[str] = None,
    ):
        self.service = service
        self.user_id = user_id
        self.snapshots = snapshots
        self.journal = journal
        self.journal_path = journal_path
        self.running = True

    def save(self) -> str:
        if self.snapshots is None:
            return "Persistence disabled."
        self.snapshots.save(self.service.snapshot())
        if self.journal is not None and self.journal_path:
            self.journal.save(self.journal_path)
        return f"Saved to {self.snapshots.path}"

    def execute(self, line: str) -> str:
        try:
            parts = shlex.split(line)
        except ValueError as e:
            return f"Error: {e}"
        if not parts:
            return ""

        cmd, args = parts[0].lower(), parts[1:]
        handler = self._handlers().get(cmd)
        if handler is None:
            return 'Unknown command. Type "help" for available commands.'

        try:
            return handler(args)
        except TradingError as e:
            logger.debug("%s rejected for %s: %s", cmd, self.user_id, e.to_dict())
            return f"Error: {e.message}"
        except (IndexError, ValueError):
            return f"Usage error. {self._usage(cmd)}"

    def _handlers(self) -> dict:
        return {
            "create": self._create,
            "buy": self._buy,
            "sell": self._sell,
            "bundle-buy": self._bundle_buy,
            "bundle-sell": self._bundle_sell,
            "cancel": self._cancel,
            "orders": self._orders,
            "market": self._market,
            "list": self._list,
            "balance": self._balance,
            "position": self._position,
            "resolve": self._resolve,
            "leaderboard": self._leaderboard,
            "user": self._user,
            "save": lambda args: self.save(),
            "help": lambda args: HELP,
            "quit": self._quit,
            "exit": self._quit,
        }

    @staticmethod
    def _usage(cmd: str) -> str:
        for line in HELP.splitlines():
            if line.strip().startswith(cmd + " ") or line.strip() == cmd:
                return "Usage: " + line.strip().split("  ")[0]
        return 'Type "help" for available commands.'

    # ---------------- handlers ----------------

    def _create(self, args: List[str]) -> str:
        market_id, outcomes = args[0], [s for s in args[1].split(",") if s.strip()]
        description = " ".join(args[2:])
        info = self.service.create_market(market_id, description, outcomes)
        ids = ", ".join(f"{oid}={o.name}" for oid, o in info.outcomes.items())
        return f"Created market {info.market_id} ({ids})"

    def _buy(self, args: List[str]) -> str:
        market_id, outcome_id, qty = args[0], args[1], int(args[2])
        if len(args) > 3:
            res = self.service.place_buy_order(self.user_id, market_id, outcome_id, args[3], qty)
            filled = res.order.filled_quantity
            return (
                f"Buy order #{res.order.order_id} placed: {qty} @ ${res.order.price:.2f}"
                f" (filled {filled}, resting {res.order.quantity})"
            )
        res = self.service.market_buy(self.user_id, market_id, outcome_id, qty)
        return f"Market buy: {qty} shares for ${res.total:.2f}"

    def _sell(self, args: List[str]) -> str:
        market_id, outcome_id, qty = args[0], args[1], int(args[2])
        if len(args) > 3:
            res = self.service.place_sell_order(self.user_id, market_id, outcome_id, args[3], qty)
            filled = res.order.filled_quantity
            return (
                f"Sell order #{res.order.order_id} placed: {qty} @ ${res.order.price:.2f}"
                f" (filled {filled}, resting {res.order.quantity})"
            )
        res = self.service.market_sell(self.user_id, market_id, outcome_id, qty)
        return f"Market sell: {qty} shares for ${res.total:.2f}"

    def _bundle_buy(self, args: List[str]) -> str:
        res = self.service.buy_bundle(self.user_id, args[0], int(args[1]))
        return f"Bought {res.quantity} bundles for ${res.amount:.2f}"

    def _bundle_sell(self, args: List[str]) -> str:
        res = self.service.sell_bundle(self.user_id, args[0], int(args[1]))
        return f"Sold {res.quantity} bundles for ${res.amount:.2f}"

    def _cancel(self, args: List[str]) -> str:
        res = self.service.cancel_order(self.user_id, args[0], args[1], args[2])
        if res.order.side == "buy":
            return f"Cancelled order #{res.order.order_id}, refunded ${res.refunded:.2f}"
        return f"Cancelled order #{res.order.order_id}, returned {res.returned_shares} shares"

    def _orders(self, args: List[str]) -> str:
        orders = self.service.get_user_orders(self.user_id, args[0])
        if not orders:
            return "No open orders."
        return "\n".join(
            f"#{o.order_id} {o.side.upper()} {o.quantity} {o.outcome_name} (ID: {o.outcome_id}) @ ${o.price:.2f}"
            for o in orders
        )

    def _market(self, args: List[str]) -> str:
        return format_market(self.service.get_market_info(args[0]))

    def _list(self, args: List[str]) -> str:
        markets = self.service.list_markets()
        if not markets:
            return "No markets."
        return "\n".join(
            f"{m.market_id}: {m.description} ({m.num_outcomes} outcomes{', resolved' if m.resolved else ''})"
            for m in markets
        )

    def _balance(self, args: List[str]) -> str:
        return f"Balance: ${self.service.get_user_balance(self.user_id):.2f}"

    def _position(self, args: List[str]) -> str:
        positions = self.service.get_user_position(self.user_id, args[0])
        held = {oid: q for oid, q in positions.items() if q}
        if not held:
            return f"No positions in {args[0]}."
        lines = [f"Positions in {args[0]}:"]
        lines += [f"  Outcome {oid}: {q} shares" for oid, q in held.items()]
        return "\n".join(lines)

    def _resolve(self, args: List[str]) -> str:
        res = self.service.resolve_market(args[0], args[1])
        return (
            f"Market {res.market_id} resolved to {res.winning_outcome}: "
            f"{len(res.payouts)} users paid, {res.refunded_orders} orders refunded"
        )

    def _leaderboard(self, args: List[str]) -> str:
        rows = self.service.get_leaderboard(args[0] if args else None, limit=10)
        if not rows:
            return "Leaderboard is empty."
        return "\n".join(f"{r.rank}. {r.user_id} ${r.total:.2f}" for r in rows)

    def _user(self, args: List[str]) -> str:
        self.user_id = args[0]
        return f"Now acting as {self.user_id}"

    def _quit(self, args: List[str]) -> str:
        self.running = False
        return "Bye."

    # ---------------- loop ----------------

    def run(self, read: Callable[[str], str] = input, write: Callable[[str], None] = print) -> None:
        write("Prediction Market CLI")
        write('Type "help" for commands\n')
        while self.running:
            try:
                line = read(PROMPT)
            except (EOFError, KeyboardInterrupt):
                line = "quit"
            out = self.execute(line)
            if out:
                write(out)
