"""
Journal tests: record accepted intents, replay them into a fresh service.
"""
import threading

import pytest

from application.journal import JournalPlayer, TransactionJournal
from application.store import MarketStore
from application.trading_service import TradingService
from engine.errors import InsufficientFundsError
from infrastructure.config import ExchangeConfig


def play_session(service):
    service.create_market("RAIN", "Will it rain?", ["Yes", "No"])
    service.buy_bundle("alice", "RAIN", 10)
    service.place_sell_order("alice", "RAIN", "0", 0.40, 6)
    service.place_buy_order("bob", "RAIN", "0", 0.45, 4)
    service.market_buy("carol", "RAIN", "0", 2)
    bid = service.place_buy_order("bob", "RAIN", "1", 0.20, 5).order
    service.cancel_order("bob", "RAIN", "1", bid.order_id)
    service.sell_bundle("alice", "RAIN", 4)


class TestTransactionJournal:
    def test_records_header_and_commands(self, config):
        service = TradingService(config)
        journal = TransactionJournal()
        journal.attach(service)
        play_session(service)

        records = journal.records
        assert records[0]["type"] == "header"
        assert records[0]["header"]["starting_balance"] == 1000.0
        commands = [r["command"] for r in records[1:]]
        assert commands == [
            "market_created",
            "bundle_bought",
            "order_placed",
            "order_placed",
            "market_order",
            "order_placed",
            "order_cancelled",
            "bundle_sold",
        ]

    def test_rejected_intents_not_recorded(self, config):
        service = TradingService(config)
        journal = TransactionJournal()
        journal.attach(service)
        service.create_market("RAIN", "Will it rain?", ["Yes", "No"])
        with pytest.raises(InsufficientFundsError):
            service.buy_bundle("alice", "RAIN", 5000)
        assert len(journal.records) == 2

    def test_detach_stops_recording(self, config):
        service = TradingService(config)
        journal = TransactionJournal()
        journal.attach(service)
        journal.detach()
        service.create_market("RAIN", "Will it rain?", ["Yes", "No"])
        assert len(journal.records) == 1


class TestJournalReplay:
    def test_replay_rebuilds_state(self, config, tmp_path):
        original = TradingService(config)
        journal = TransactionJournal()
        journal.attach(original)
        play_session(original)
        original.resolve_market("RAIN", "0")

        path = str(tmp_path / "journal.jsonl")
        journal.save(path)

        replayed = TradingService(config)
        applied = JournalPlayer(TransactionJournal.load(path)).replay(replayed)

        assert applied == 9
        assert replayed.snapshot()["userBalances"] == original.snapshot()["userBalances"]
        assert replayed.snapshot()["userPositions"] == original.snapshot()["userPositions"]
        assert replayed.get_market_info("RAIN").resolved

    def test_replay_preserves_order_ids(self, config):
        original = TradingService(config)
        journal = TransactionJournal()
        journal.attach(original)
        play_session(original)

        replayed = TradingService(config)
        JournalPlayer(journal.records).replay(replayed)

        assert replayed.get_user_orders("alice", "RAIN") == []
        nxt = replayed.place_buy_order("dave", "RAIN", "1", 0.05, 1).order
        assert nxt.order_id == original.place_buy_order("dave", "RAIN", "1", 0.05, 1).order.order_id

    def test_iter_commands_skips_header(self):
        records = [
            {"type": "header", "header": {}},
            {"type": "command", "command": "bundle_bought", "payload": {"user": "a", "market": "M", "quantity": 1}},
        ]
        commands = list(JournalPlayer(records).iter_commands())
        assert len(commands) == 1
        assert commands[0][1]["quantity"] == 1


class TestJournalAcrossSessions:
    def test_save_reload_restore(self, config, tmp_path):
        first = TradingService(config)
        first.create_market("RAIN", "Will it rain?", ["Yes", "No"])
        first.buy_bundle("alice", "RAIN", 5)

        second = TradingService(config, store=MarketStore.from_snapshot(first.snapshot(), config))
        journal = TransactionJournal()
        journal.attach(second)
        second.sell_bundle("alice", "RAIN", 2)
        second.place_sell_order("alice", "RAIN", "0", 0.70, 1)
        journal.detach()

        path = str(tmp_path / "journal.jsonl")
        journal.save(path)
        player = JournalPlayer(TransactionJournal.load(path))
        restored = player.restore(config)

        assert player.header["base"]["userBalances"] == {"alice": 995.0}
        assert restored.snapshot()["userBalances"] == second.snapshot()["userBalances"]
        assert restored.snapshot()["userPositions"] == second.snapshot()["userPositions"]
        assert restored.get_market_info("RAIN").outcomes["0"].asks == [(0.70, 1)]

    def test_restore_without_base_starts_empty(self, config):
        service = TradingService(config)
        journal = TransactionJournal()
        journal.attach(service)
        play_session(service)

        restored = JournalPlayer(journal.records).restore(config)
        assert restored.snapshot()["userBalances"] == service.snapshot()["userBalances"]

    def test_restore_rejects_other_starting_balance(self, config):
        service = TradingService(config)
        journal = TransactionJournal()
        journal.attach(service)

        with pytest.raises(ValueError):
            JournalPlayer(journal.records).restore(ExchangeConfig(starting_balance=5.0, journal_path=None))


class TestJournalConcurrency:
    def test_detach_during_trading_does_not_deadlock(self, config):
        service = TradingService(config)
        service.create_market("RAIN", "Will it rain?", ["Yes", "No"])
        journal = TransactionJournal()

        def trade():
            for _ in range(300):
                order = service.place_buy_order("alice", "RAIN", "0", 0.10, 1).order
                service.cancel_order("alice", "RAIN", "0", order.order_id)

        def toggle():
            for _ in range(300):
                journal.attach(service)
                journal.detach()

        threads = [threading.Thread(target=trade, daemon=True), threading.Thread(target=toggle, daemon=True)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=20)
        assert not any(t.is_alive() for t in threads)
        assert service.get_user_balance("alice") == 1000.0
