from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from research.schemas import LeaderboardEntry, LeaderboardResult
from shared.config.schema import LeaderboardConfig
from utils.strategy_config import (
    StrategyConfigDocument,
    config_digest,
    dump_strategy_config,
    extract_from_entries,
    extract_multi_symbol_config,
    extract_strategy_config,
    filter_and_sort_entries,
    load_strategy_config,
    parse_strategy_config,
    to_dict,
)

FIXED_NOW = lambda: datetime(2024, 1, 1, tzinfo=timezone.utc)  # noqa: E731


def _entry(sid: str, score: float = 0.0, rank: int = 0, trades: int = 50, **params: float) -> LeaderboardEntry:
    return LeaderboardEntry(
        strategy_id=sid,
        strategy_name=sid,
        params=dict(params),
        total_trades=trades,
        composite_score=score,
        rank=rank,
    )


def _result(symbol: str, entries, executed_at: int = 0) -> LeaderboardResult:
    return LeaderboardResult(entries, LeaderboardConfig(symbol=symbol), executed_at, len(entries), 0, 10)


def test_filter_and_sort_prefers_rank_when_complete():
    entries = [_entry("a", score=10, rank=2), _entry("b", score=5, rank=1)]
    assert [e.strategy_id for e in filter_and_sort_entries(entries)] == ["b", "a"]


def test_filter_and_sort_falls_back_to_score():
    entries = [_entry("a", score=10, rank=2), _entry("c", score=30), _entry("b", score=30)]
    assert [e.strategy_id for e in filter_and_sort_entries(entries)] == ["b", "c", "a"]


def test_filter_and_sort_min_trades():
    entries = [_entry("a", score=10, trades=5), _entry("b", score=1, trades=40)]
    assert [e.strategy_id for e in filter_and_sort_entries(entries, min_trades=30)] == ["b"]


def test_extract_top_n_with_sorted_params():
    result = _result(
        "BTCUSDT",
        [
            _entry("zmr-60", score=80, rank=1, z_threshold=2.5, lookback_returns=60),
            _entry("rsi-bb", score=70, rank=2),
            _entry("vote", score=60, rank=3),
        ],
    )
    doc = extract_strategy_config(result, top_n=2, now=FIXED_NOW)
    assert doc.generated_at == "2024-01-01T00:00:00Z"
    cfg = doc.symbols["BTCUSDT"]
    assert cfg.strategies == ["zmr-60", "rsi-bb"]
    assert list(cfg.params["zmr-60"]) == ["lookback_returns", "z_threshold"]
    assert "rsi-bb" not in cfg.params


def test_extract_without_symbol_or_entries_is_empty():
    assert extract_from_entries([_entry("a")], "", now=FIXED_NOW).symbols == {}
    assert extract_from_entries([], "BTCUSDT", now=FIXED_NOW).symbols == {}


def test_multi_symbol_prefers_latest_non_empty_run():
    old = _result("ETHUSDT", [_entry("rsi-bb", score=50, trades=100)], executed_at=1)
    new_sparse = _result("ETHUSDT", [_entry("vote", score=90, trades=3)], executed_at=2)
    btc = _result("BTCUSDT", [_entry("zmr-60", score=10)], executed_at=5)
    no_symbol = _result("", [_entry("x", score=99)], executed_at=9)

    doc = extract_multi_symbol_config([new_sparse, btc, old, no_symbol], min_trades=30, now=FIXED_NOW)
    assert list(doc.symbols) == ["BTCUSDT", "ETHUSDT"]
    assert doc.symbols["ETHUSDT"].strategies == ["rsi-bb"]

    latest = extract_multi_symbol_config([old, new_sparse], min_trades=0, now=FIXED_NOW)
    assert latest.symbols["ETHUSDT"].strategies == ["vote"]


def test_output_is_reproducible(tmp_path):
    entries = [_entry("b", score=1, beta=2, alpha=1), _entry("a", score=1)]
    first = dump_strategy_config(extract_from_entries(entries, "X", now=FIXED_NOW), tmp_path / "one.json")
    second = dump_strategy_config(
        extract_from_entries(list(reversed(entries)), "X", now=FIXED_NOW), tmp_path / "two.json"
    )
    assert first.read_bytes() == second.read_bytes()
    payload = json.loads(first.read_text(encoding="utf-8"))
    assert list(payload) == ["generatedAt", "dataSource", "symbols"]
    assert payload["symbols"]["X"]["strategies"] == ["a", "b"]


def test_json_and_yaml_roundtrip(tmp_path):
    doc = extract_from_entries([_entry("zmr-60", score=1, z_threshold=3)], "BTCUSDT", data_source="demo", now=FIXED_NOW)
    for name in ("cfg.json", "cfg.yml"):
        loaded = load_strategy_config(dump_strategy_config(doc, tmp_path / name))
        assert loaded == doc
        assert loaded.data_source == "demo"


def test_digest_ignores_generated_at():
    a = StrategyConfigDocument(generated_at="2024-01-01T00:00:00Z", symbols={"X": {"strategies": ["a"]}})
    b = StrategyConfigDocument(generated_at="2025-06-01T00:00:00Z", symbols={"X": {"strategies": ["a"]}})
    c = StrategyConfigDocument(generated_at="2024-01-01T00:00:00Z", symbols={"X": {"strategies": ["b"]}})
    assert config_digest(a) == config_digest(b)
    assert config_digest(a) != config_digest(c)
    assert to_dict(a)["symbols"]["X"] == {"strategies": ["a"], "params": {}}


def test_parse_strategy_config_variants(tmp_path):
    bare = parse_strategy_config({"BTCUSDT": {"strategies": ["rsi-bb"]}})
    assert bare.symbols["BTCUSDT"].strategies == ["rsi-bb"]

    full = parse_strategy_config(
        {"generatedAt": "2024-01-01T00:00:00Z", "dataSource": "real", "symbols": {"ETHUSDT": {"strategies": []}}}
    )
    assert full.data_source == "real"
    assert parse_strategy_config(full) is full

    with pytest.raises(ValueError):
        parse_strategy_config(["rsi-bb"])
    with pytest.raises(ValueError):
        parse_strategy_config({"BTCUSDT": {"strategies": ["a"], "weights": {}}})
    with pytest.raises(FileNotFoundError):
        load_strategy_config(tmp_path / "none.json")
