"""
Command shell tests: each command line in, output text out.
"""
import pytest

from application.journal import TransactionJournal
from application.trading_service import TradingService
from infrastructure.persistence import SnapshotStore
from ui.shell import CommandShell


@pytest.fixture
def shell(service):
    sh = CommandShell(service, user_id="alice")
    sh.execute("create RAIN Yes,No Will it rain tomorrow?")
    return sh


class TestShellCommands:
    def test_create(self, service):
        sh = CommandShell(service)
        out = sh.execute("create RAIN Yes,No Will it rain tomorrow?")
        assert out == "Created market RAIN (0=Yes, 1=No)"
        assert service.get_market_info("RAIN").description == "Will it rain tomorrow?"

    def test_balance_and_bundle(self, shell):
        assert shell.execute("balance") == "Balance: $1000.00"
        assert shell.execute("bundle-buy RAIN 50") == "Bought 50 bundles for $50.00"
        assert shell.execute("balance") == "Balance: $950.00"
        assert shell.execute("bundle-sell RAIN 10") == "Sold 10 bundles for $10.00"

    def test_limit_buy_and_cancel(self, shell):
        out = shell.execute("buy RAIN 0 10 0.25")
        assert out == "Buy order #1 placed: 10 @ $0.25 (filled 0, resting 10)"
        assert shell.execute("orders RAIN") == "#1 BUY 10 Yes (ID: 0) @ $0.25"
        assert shell.execute("cancel RAIN 0 1") == "Cancelled order #1, refunded $2.50"
        assert shell.execute("orders RAIN") == "No open orders."

    def test_sell_and_market_buy_between_users(self, shell):
        shell.execute("bundle-buy RAIN 10")
        assert shell.execute("sell RAIN 0 5 0.60") == "Sell order #1 placed: 5 @ $0.60 (filled 0, resting 5)"
        assert shell.execute("user bob") == "Now acting as bob"
        assert shell.execute("buy RAIN 0 2") == "Market buy: 2 shares for $1.20"
        assert shell.execute("position RAIN") == "Positions in RAIN:\n  Outcome 0: 2 shares"

    def test_market_sell(self, shell):
        shell.execute("buy RAIN 1 3 0.30")
        shell.execute("user bob")
        shell.execute("bundle-buy RAIN 3")
        assert shell.execute("sell RAIN 1 3") == "Market sell: 3 shares for $0.90"

    def test_cancel_sell_returns_shares(self, shell):
        shell.execute("bundle-buy RAIN 2")
        shell.execute("sell RAIN 1 2 0.80")
        assert shell.execute("cancel RAIN 1 1") == "Cancelled order #1, returned 2 shares"

    def test_market_view(self, shell):
        shell.execute("buy RAIN 0 5 0.40")
        out = shell.execute("market RAIN")
        lines = out.splitlines()
        assert lines[0] == "Market RAIN: Will it rain tomorrow?"
        assert "Yes (ID: 0)" in lines
        assert "  Bids: $0.40(5)" in lines
        assert "  Asks: none" in lines
        assert lines[-2] == "Sum of best bids: $0.40"
        assert lines[-1] == "Sum of best asks: $0.00"

    def test_list(self, shell):
        assert shell.execute("list") == "RAIN: Will it rain tomorrow? (2 outcomes)"

    def test_list_empty(self, service):
        assert CommandShell(service).execute("list") == "No markets."

    def test_resolve_and_leaderboard(self, shell):
        shell.execute("bundle-buy RAIN 5")
        shell.execute("buy RAIN 0 1 0.10")
        out = shell.execute("resolve RAIN 0")
        assert out == "Market RAIN resolved to 0: 1 users paid, 1 orders refunded"
        assert "resolved" in shell.execute("list")
        assert "RESOLVED -> Yes" in shell.execute("market RAIN")
        assert shell.execute("leaderboard") == "1. alice $1000.00"

    def test_position_empty(self, shell):
        assert shell.execute("position RAIN") == "No positions in RAIN."


class TestShellErrors:
    def test_trading_error_message(self, shell):
        assert shell.execute("sell RAIN 0 5 0.50") == (
            "Error: Insufficient position in outcome 0: need 5 shares, have 0"
        )

    def test_insufficient_funds(self, shell):
        out = shell.execute("buy RAIN 0 2000 0.99")
        assert out == "Error: Insufficient balance: need $1,980.00, have $1,000.00"

    def test_not_found(self, shell):
        assert shell.execute("cancel RAIN 0 99") == "Error: Order not found: 99"
        assert shell.execute("market NOPE") == "Error: Market not found: NOPE"

    def test_usage_error(self, shell):
        assert shell.execute("buy RAIN") == "Usage error. Usage: buy <market_id> <outcome_id> <quantity> [price]"
        assert shell.execute("bundle-buy RAIN many").startswith("Usage error.")

    def test_unknown_command(self, shell):
        assert shell.execute("frobnicate") == 'Unknown command. Type "help" for available commands.'

    def test_blank_line(self, shell):
        assert shell.execute("   ") == ""

    def test_help(self, shell):
        assert shell.execute("help").startswith("Commands:")


class TestShellPersistence:
    def test_save_disabled(self, shell):
        assert shell.execute("save") == "Persistence disabled."

    def test_save_writes_snapshot_and_journal(self, tmp_path, config):
        service = TradingService(config)
        snapshots = SnapshotStore(str(tmp_path / "market.json"))
        journal = TransactionJournal()
        journal.attach(service)
        journal_path = str(tmp_path / "journal.jsonl")
        sh = CommandShell(service, snapshots=snapshots, journal=journal, journal_path=journal_path)

        sh.execute("create RAIN Yes,No Rain?")
        assert sh.execute("save") == f"Saved to {snapshots.path}"
        assert "RAIN" in snapshots.load()["markets"]
        assert len(TransactionJournal.load(journal_path)) == 2


class TestShellLoop:
    def test_run_until_quit(self, shell):
        lines = iter(["balance", "quit"])
        out = []
        shell.run(read=lambda prompt: next(lines), write=out.append)
        assert "Balance: $1000.00" in out
        assert out[-1] == "Bye."
        assert not shell.running

    def test_eof_quits(self, shell):
        def read(prompt):
            raise EOFError

        out = []
        shell.run(read=read, write=out.append)
        assert out[-1] == "Bye."
