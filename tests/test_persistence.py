"""
Persistence tests.

Coverage:
- Snapshot shape and round trip through MarketStore
- Order ids continue after a reload
- SnapshotStore backup rotation and fallback to backups
"""
import json

import pytest

from application.store import MarketStore
from application.trading_service import TradingService
from infrastructure.config import ExchangeConfig
from infrastructure.persistence import SnapshotStore, atomic_write_jsonl, read_jsonl, to_jsonable


def busy_service(config):
    service = TradingService(config)
    service.create_market("RAIN", "Will it rain?", ["Yes", "No"])
    service.buy_bundle("alice", "RAIN", 10)
    service.place_sell_order("alice", "RAIN", "0", 0.40, 6)
    service.place_buy_order("bob", "RAIN", "0", 0.45, 4)
    service.place_buy_order("bob", "RAIN", "1", 0.20, 5)
    return service


class TestSnapshotShape:
    def test_top_level_keys(self, config):
        snap = busy_service(config).snapshot()
        assert set(snap) == {"markets", "userBalances", "userPositions", "bundlePrice"}
        assert snap["bundlePrice"] == 1.0
        assert snap["userBalances"] == {"alice": 991.6, "bob": 997.4}
        assert snap["userPositions"]["bob"] == {"RAIN": {"0": 4}}

    def test_snapshot_is_json_serializable(self, config):
        snap = busy_service(config).snapshot()
        assert json.loads(json.dumps(snap)) == snap


class TestMarketStoreRoundTrip:
    def test_reload_restores_books_and_ledger(self, config):
        original = busy_service(config)
        snap = json.loads(json.dumps(original.snapshot()))

        restored = TradingService(config, store=MarketStore.from_snapshot(snap, config))

        assert restored.snapshot() == snap
        info = restored.get_market_info("RAIN")
        assert info.outcomes["0"].asks == [(0.40, 2)]
        assert info.outcomes["0"].last_price == 0.40
        assert info.outcomes["1"].bids == [(0.20, 5)]
        assert restored.get_user_balance("bob") == 997.4

    def test_order_ids_continue_after_reload(self, config):
        original = busy_service(config)
        bid = original.place_buy_order("carol", "RAIN", "1", 0.10, 1).order
        original.cancel_order("carol", "RAIN", "1", bid.order_id)

        restored = TradingService(config, store=MarketStore.from_snapshot(original.snapshot(), config))
        new = restored.place_buy_order("carol", "RAIN", "1", 0.10, 1).order
        assert new.order_id == bid.order_id + 1

    def test_escrow_survives_reload(self, config):
        original = busy_service(config)
        restored = TradingService(config, store=MarketStore.from_snapshot(original.snapshot(), config))

        res = restored.cancel_order("bob", "RAIN", "1", 1)
        assert res.refunded == 1.00
        assert restored.get_user_balance("bob") == 998.4

    def test_resolved_market_reloads_resolved(self, config):
        original = busy_service(config)
        original.resolve_market("RAIN", "0")
        restored = TradingService(config, store=MarketStore.from_snapshot(original.snapshot(), config))

        info = restored.get_market_info("RAIN")
        assert info.resolved
        assert info.winning_outcome == "0"

    def test_bundle_price_mismatch_rejected(self, config):
        snap = busy_service(config).snapshot()
        snap["bundlePrice"] = 2.0
        with pytest.raises(ValueError):
            MarketStore.from_snapshot(snap, config)

    def test_empty_snapshot(self, config):
        store = MarketStore.from_snapshot({}, config)
        assert len(store.registry) == 0
        assert store.ledger.users() == []


class TestSnapshotStore:
    def test_missing_file_loads_none(self, tmp_path):
        assert SnapshotStore(str(tmp_path / "market.json")).load() is None

    def test_save_and_load(self, tmp_path, config):
        store = SnapshotStore(str(tmp_path / "data" / "market.json"))
        snap = busy_service(config).snapshot()
        store.save(snap)
        assert store.load() == json.loads(json.dumps(snap))

    def test_rotation_keeps_bounded_backups(self, tmp_path):
        path = tmp_path / "market.json"
        store = SnapshotStore(str(path), backup_count=2)
        for i in range(4):
            store.save({"markets": {}, "userBalances": {}, "userPositions": {}, "bundlePrice": 1.0, "n": i})

        assert store.backups() == [str(path) + ".1", str(path) + ".2"]
        assert store.load()["n"] == 3
        with open(str(path) + ".1") as f:
            assert json.load(f)["n"] == 2
        with open(str(path) + ".2") as f:
            assert json.load(f)["n"] == 1

    def test_corrupt_main_file_falls_back_to_backup(self, tmp_path):
        path = tmp_path / "market.json"
        store = SnapshotStore(str(path), backup_count=3)
        store.save({"n": 1})
        store.save({"n": 2})
        path.write_text("{not json")

        assert store.load() == {"n": 1}

    def test_zero_backups(self, tmp_path):
        path = tmp_path / "market.json"
        store = SnapshotStore(str(path), backup_count=0)
        store.save({"n": 1})
        store.save({"n": 2})
        assert store.backups() == []
        assert store.load() == {"n": 2}

    def test_negative_backup_count(self, tmp_path):
        with pytest.raises(ValueError):
            SnapshotStore(str(tmp_path / "x.json"), backup_count=-1)


class TestJsonl:
    def test_jsonl_round_trip_skips_blank_lines(self, tmp_path):
        path = tmp_path / "records.jsonl"
        atomic_write_jsonl(str(path), [{"a": 1}, {"b": [1, 2]}])
        with open(path, "a") as f:
            f.write("\n")
        assert read_jsonl(str(path)) == [{"a": 1}, {"b": [1, 2]}]

    def test_to_jsonable_normalizes_keys_and_tuples(self):
        assert to_jsonable({1: (1, 2), "n": {2: "x"}}) == {"1": [1, 2], "n": {"2": "x"}}
        assert to_jsonable(3.5) == 3.5

    def test_tuple_payloads_written_as_lists(self, tmp_path):
        path = str(tmp_path / "records.jsonl")
        atomic_write_jsonl(path, [{"outcomes": [("0", "Yes"), ("1", "No")], 7: "k"}])
        assert read_jsonl(path) == [{"outcomes": [["0", "Yes"], ["1", "No"]], "7": "k"}]
        assert not [p for p in tmp_path.iterdir() if p.name.startswith(".tmp_")]


class TestConfig:
    def test_defaults(self):
        cfg = ExchangeConfig.DEFAULT()
        assert cfg.starting_balance_cents == 100_000
        assert cfg.bundle_price == 1.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"starting_balance": -1}, {"bundle_price": 2.0}, {"depth_levels": 0}, {"event_history": 0}, {"backup_count": -1}],
    )
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            ExchangeConfig(**kwargs)
