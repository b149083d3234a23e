from __future__ import annotations

from dataclasses import dataclass, asdict
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import time

from infrastructure.config import ExchangeConfig
from infrastructure.logger import get_logger
from infrastructure.persistence import atomic_write_jsonl, read_jsonl

from .store import MarketStore
from .trading_service import EventType, MarketEvent, TradingService

logger = get_logger(__name__)

JOURNAL_VERSION = 2

# Intents that change state; trades are a consequence of these and are not replayed.
REPLAYABLE = (
    EventType.MARKET_CREATED,
    EventType.ORDER_PLACED,
    EventType.MARKET_ORDER,
    EventType.BUNDLE_BOUGHT,
    EventType.BUNDLE_SOLD,
    EventType.ORDER_CANCELLED,
    EventType.MARKET_RESOLVED,
)


@dataclass(frozen=True)
class JournalHeader:
    """
    base is the service snapshot at attach time: a journal opened on a
    service loaded from disk replays on top of that state, not an empty one.
    """
    version: int
    created_at: float
    starting_balance: float
    base: Dict[str, Any]


class TransactionJournal:
    """
    Records every accepted trading intent to JSONL.

    Only intents that succeeded reach the journal (the service emits events
    after validation), so base snapshot + commands rebuilds the same books
    and ledger.

    Lock order: the service lock is never taken while holding the journal
    lock; event delivery already holds the service lock when it reaches
    _on_event.
    """

    def __init__(self):
        self._lock = RLock()
        self._header: Optional[JournalHeader] = None
        self._commands: List[Dict[str, Any]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, service: TradingService) -> None:
        with self._lock:
            self._commands = []
        base, unsubscribe = service.snapshot_and_subscribe(self._on_event)
        with self._lock:
            self._header = JournalHeader(
                version=JOURNAL_VERSION,
                created_at=time.time(),
                starting_balance=service.config.starting_balance,
                base=base,
            )
            self._unsubscribe = unsubscribe

    def detach(self) -> None:
        with self._lock:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe:
            unsubscribe()

    def _on_event(self, ev: MarketEvent) -> None:
        if ev.event_type not in REPLAYABLE:
            return
        with self._lock:
            self._commands.append(
                {"type": "command", "ts": ev.timestamp, "command": ev.event_type.value, "payload": dict(ev.data)}
            )

    @property
    def records(self) -> List[Dict[str, Any]]:
        with self._lock:
            out: List[Dict[str, Any]] = []
            if self._header is not None:
                out.append({"type": "header", "ts": self._header.created_at, "header": asdict(self._header)})
            return out + list(self._commands)

    def save(self, path_jsonl: str) -> None:
        atomic_write_jsonl(path_jsonl, self.records)

    @staticmethod
    def load(path_jsonl: str) -> List[Dict[str, Any]]:
        return read_jsonl(path_jsonl)


class JournalPlayer:
    """Re-applies recorded commands, in order, on top of the journal's base snapshot."""

    def __init__(self, records: List[Dict[str, Any]]):
        self.records = records

    @property
    def header(self) -> Optional[Dict[str, Any]]:
        for r in self.records:
            if r.get("type") == "header":
                return r["header"]
        return None

    def iter_commands(self) -> Iterator[Tuple[EventType, Dict[str, Any]]]:
        for r in self.records:
            if r.get("type") == "command":
                yield EventType(r["command"]), r["payload"]

    def restore(self, config: ExchangeConfig) -> TradingService:
        """Fresh service built from the base snapshot, with every command replayed."""
        header = self.header or {}
        recorded = header.get("starting_balance")
        if recorded is not None and float(recorded) != config.starting_balance:
            raise ValueError(
                f"Journal starting_balance {recorded} does not match {config.starting_balance}"
            )
        base = header.get("base")
        store = MarketStore.from_snapshot(base, config) if base else None
        service = TradingService(config, store=store)
        self.replay(service)
        return service

    def replay(self, service: TradingService) -> int:
        """Apply the commands only; service must already hold the base state."""
        applied = 0
        for command, p in self.iter_commands():
            self._apply(service, command, p)
            applied += 1
        logger.info("Replayed %d journal commands", applied)
        return applied

    @staticmethod
    def _apply(service: TradingService, command: EventType, p: Dict[str, Any]) -> None:
        if command is EventType.MARKET_CREATED:
            service.create_market(p["market"], p["description"], [tuple(x) for x in p["outcomes"]])
        elif command is EventType.ORDER_PLACED:
            if p["side"] == "buy":
                service.place_buy_order(p["user"], p["market"], p["outcome"], p["price"], p["quantity"])
            else:
                service.place_sell_order(p["user"], p["market"], p["outcome"], p["price"], p["quantity"])
        elif command is EventType.MARKET_ORDER:
            if p["side"] == "buy":
                service.market_buy(p["user"], p["market"], p["outcome"], p["quantity"])
            else:
                service.market_sell(p["user"], p["market"], p["outcome"], p["quantity"])
        elif command is EventType.BUNDLE_BOUGHT:
            service.buy_bundle(p["user"], p["market"], p["quantity"])
        elif command is EventType.BUNDLE_SOLD:
            service.sell_bundle(p["user"], p["market"], p["quantity"])
        elif command is EventType.ORDER_CANCELLED:
            service.cancel_order(p["user"], p["market"], p["outcome"], p["order_id"])
        elif command is EventType.MARKET_RESOLVED:
            service.resolve_market(p["market"], p["winning_outcome"])
