# main.py
from __future__ import annotations

from application.journal import TransactionJournal
from application.store import MarketStore
from application.trading_service import TradingService
from infrastructure.config import ExchangeConfig
from infrastructure.logger import configure_logging, get_logger, LoggingConfig
from infrastructure.persistence import SnapshotStore
from ui.shell import CommandShell

logger = get_logger("main")


def build_service(cfg: ExchangeConfig, snapshots: SnapshotStore) -> TradingService:
    data = snapshots.load()
    if data is None:
        logger.info("No snapshot at %s, starting with empty state", snapshots.path)
        return TradingService(cfg)
    store = MarketStore.from_snapshot(data, cfg)
    logger.info("Loaded %d markets, %d users from %s", len(store.registry), len(store.ledger.users()), snapshots.path)
    return TradingService(cfg, store=store)


def main() -> None:
    configure_logging(
        LoggingConfig(level="INFO", log_file="runs/market.log", trade_log="runs/trades.log", console=False)
    )

    cfg = ExchangeConfig.DEFAULT()
    snapshots = SnapshotStore(cfg.snapshot_path, backup_count=cfg.backup_count)
    service = build_service(cfg, snapshots)

    journal = TransactionJournal()
    journal.attach(service)

    shell = CommandShell(service, snapshots=snapshots, journal=journal, journal_path=cfg.journal_path)
    print('Ready! Try: create RAIN Yes,No Will it rain tomorrow?')
    shell.run()

    journal.detach()
    print(shell.save())


if __name__ == "__main__":
    main()
