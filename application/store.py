from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from engine.ledger import Ledger
from engine.market import Market, MarketRegistry
from infrastructure.config import ExchangeConfig


@dataclass
class MarketStore:
    """
    Everything the exchange knows: markets (with their books) and the ledger.

    Owned by one TradingService; there is no module-level state.
    """
    registry: MarketRegistry = field(default_factory=MarketRegistry)
    ledger: Ledger = field(default_factory=Ledger)
    bundle_price: float = 1.0

    @staticmethod
    def empty(config: ExchangeConfig) -> "MarketStore":
        return MarketStore(
            registry=MarketRegistry(),
            ledger=Ledger(config.starting_balance_cents),
            bundle_price=config.bundle_price,
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "markets": {m.market_id: m.to_dict() for m in self.registry.list()},
            "userBalances": self.ledger.balances_to_dict(),
            "userPositions": self.ledger.positions_to_dict(),
            "bundlePrice": self.bundle_price,
        }

    @staticmethod
    def from_snapshot(data: Dict[str, Any], config: ExchangeConfig) -> "MarketStore":
        registry = MarketRegistry()
        for market_id, md in (data.get("markets") or {}).items():
            registry.add(Market.from_dict(market_id, md))

        ledger = Ledger.from_dict(
            data.get("userBalances") or {},
            data.get("userPositions") or {},
            starting_balance_cents=config.starting_balance_cents,
        )
        bundle_price = float(data.get("bundlePrice") or config.bundle_price)
        if bundle_price != config.bundle_price:
            raise ValueError(f"Snapshot bundlePrice {bundle_price} does not match {config.bundle_price}")
        return MarketStore(registry=registry, ledger=ledger, bundle_price=bundle_price)
