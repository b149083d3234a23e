from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ExchangeConfig:
    """
    ExchangeConfig controls exchange-wide parameters.

    Note:
    - starting_balance is credited once, on a user's first interaction.
    - bundle_price is fixed at $1.00: one share of every outcome pays exactly
      $1 at resolution, so any other value would break the bundle invariant.
    """
    name: str = "DEFAULT"

    # Play-money credited to every new user (dollars)
    starting_balance: float = 1000.0

    bundle_price: float = 1.0

    # Price levels shown per side in market info
    depth_levels: int = 5

    # Recent events kept in memory by the trading service
    event_history: int = 200

    # Persistence
    snapshot_path: str = "data/market_data.json"
    backup_count: int = 5
    journal_path: Optional[str] = "data/journal.jsonl"

    def __post_init__(self) -> None:
        if self.starting_balance < 0:
            raise ValueError(f"starting_balance must be >= 0, got {self.starting_balance}")
        if self.bundle_price != 1.0:
            raise ValueError(f"bundle_price is fixed at 1.0, got {self.bundle_price}")
        if self.depth_levels <= 0:
            raise ValueError(f"depth_levels must be > 0, got {self.depth_levels}")
        if self.event_history <= 0:
            raise ValueError(f"event_history must be > 0, got {self.event_history}")
        if self.backup_count < 0:
            raise ValueError(f"backup_count must be >= 0, got {self.backup_count}")

    @property
    def starting_balance_cents(self) -> int:
        return int(round(self.starting_balance * 100))

    @staticmethod
    def DEFAULT() -> "ExchangeConfig":
        return ExchangeConfig()

    @staticmethod
    def IN_MEMORY() -> "ExchangeConfig":
        """No files touched: for tests and throwaway sessions."""
        return ExchangeConfig(name="IN_MEMORY", journal_path=None)
