from __future__ import annotations

import itertools
import logging

import pytest

import engine.signal_generator as sg
from algo.strategy.base import ParamSpec, StrategyDefinition
from algo.strategy.registry import StrategyRegistry
from engine.signal_generator import SignalGenerator, build_signal_report, create_signal_generator, passes_trend_filter
from shared.config.schema import SignalGeneratorConfig
from shared.models.models import Candle, RegimeInfo, Signal, StrategyResult


def _candles(n: int, start: int = 0) -> list[Candle]:
    """来回震荡的 K 线：每根高低点相同，ADX 为 0（横盘）。"""
    out = []
    for i in range(start, start + n):
        close = 100.0 if i % 2 == 0 else 100.5
        out.append(Candle((i + 1) * 60_000, 100.5 - (close - 100.0), 100.55, 99.95, close, 1.0))
    return out


def _always(direction: str = "CALL", confidence: float = 0.9):
    def evaluate(candles, params):
        return StrategyResult(direction, confidence, "", {"bias": params.get("bias", 0.0)})

    return evaluate


def _boom(candles, params):
    raise RuntimeError("broken plugin")


def _registry() -> StrategyRegistry:
    return StrategyRegistry(
        [
            StrategyDefinition("always-call", "Always Call", _always(), {"bias": ParamSpec(1, 0, 2, 1)}),
            StrategyDefinition("always-put", "Always Put", _always("PUT", 0.65)),
            StrategyDefinition("boom", "Boom", _boom),
            StrategyDefinition("silent", "Silent", lambda c, p: StrategyResult.none()),
            StrategyDefinition("malformed", "Malformed", lambda c, p: {"signal": "CALL"}),
            StrategyDefinition("sideways", "Sideways", lambda c, p: StrategyResult("UP", 0.9)),
            StrategyDefinition("nan", "NaN", lambda c, p: StrategyResult("PUT", float("nan"))),
            StrategyDefinition("text-conf", "Text Confidence", lambda c, p: StrategyResult("CALL", "0.9", "x")),
            StrategyDefinition("no-ind", "No Indicators", lambda c, p: StrategyResult("CALL", 0.9, "x", None)),
        ]
    )


def _generator(strategies: list[str] | None = None, **cfg) -> SignalGenerator:
    counter = itertools.count(1)
    config = SignalGeneratorConfig(**{"min_confidence": 0.1, **cfg})
    doc = None
    if strategies is not None:
        doc = {"TEST": {"strategies": strategies, "params": {"always-call": {"bias": 2}}}}
    return SignalGenerator(
        config,
        registry=_registry(),
        strategy_config=doc,
        clock=lambda: 1_700_000_000_000,
        id_factory=lambda: f"s{next(counter)}",
    )


def test_buffer_is_capped_at_250():
    gen = _generator()
    for c in _candles(300):
        gen.add_candle("TEST", c)
    buf = gen.get_candles("TEST")
    assert len(buf) == 250
    assert buf[0].timestamp == 51 * 60_000


def test_49_candles_never_evaluate_50th_does():
    gen = _generator(["always-call"])
    candles = _candles(50)
    for c in candles[:49]:
        assert gen.add_candle("TEST", c) is None
    signal = gen.add_candle("TEST", candles[49])
    assert isinstance(signal, Signal)
    assert signal.strategy_id == "always-call"
    assert signal.id == "TEST-1700000000000-s1"


def test_config_route_skips_unknown_failing_and_malformed(ranging_candles):
    gen = _generator(
        ["missing", "boom", "malformed", "sideways", "nan", "text-conf", "no-ind", "silent", "always-call"]
    )
    gen.set_history("TEST", ranging_candles)
    signal = gen.evaluate("TEST")
    assert signal.strategy_id == "always-call"
    assert signal.strategy == "[config] Always Call"
    assert signal.indicators["bias"] == 2
    assert signal.indicators["adx"] == 0.0
    assert signal.regime == "ranging"
    assert signal.entry_price == 100.5
    assert signal.expiry == 60


@pytest.mark.parametrize("bad", ["text-conf", "no-ind"])
def test_malformed_result_falls_through_to_next_strategy(bad, ranging_candles):
    gen = _generator([bad, "always-put"])
    gen.set_history("TEST", ranging_candles)
    signal = gen.evaluate("TEST")
    assert signal.strategy_id == "always-put"
    assert signal.confidence == 0.65
    assert gen.get_stats()["signals_filtered"] == 0


def test_config_for_other_symbol_falls_back_to_default_route(monkeypatch, ranging_candles):
    gen = _generator(["always-call"])
    monkeypatch.setattr(sg, "sbb120", lambda candles: StrategyResult.none())
    monkeypatch.setattr(sg, "rsi_bb_bounce", lambda candles, hw: StrategyResult.none())
    monkeypatch.setattr(sg, "zmr60_with_high_winrate", lambda candles, hw: StrategyResult.none())
    gen.set_history("OTHER", ranging_candles)
    assert gen.evaluate("OTHER") is None


def test_default_route_consensus(monkeypatch, ranging_candles):
    gen = _generator()
    monkeypatch.setattr(sg, "sbb120", lambda candles: StrategyResult.none())
    monkeypatch.setattr(sg, "rsi_bb_bounce", lambda candles, hw: StrategyResult("CALL", 0.6, "bb", {}))
    monkeypatch.setattr(
        sg, "zmr60_with_high_winrate", lambda candles, hw: StrategyResult("CALL", 0.8, "z", {"z": -3.0})
    )
    gen.set_history("TEST", ranging_candles)
    signal = gen.evaluate("TEST")
    assert signal.strategy_id == "RSI-BB+ZMR-60"
    assert signal.confidence == 0.8
    assert signal.indicators["zmr60_z"] == -3.0


def test_default_route_squeeze_first_with_expiry_override(monkeypatch, ranging_candles):
    gen = _generator()
    monkeypatch.setattr(
        sg, "sbb120", lambda candles: StrategyResult("PUT", 0.7, "squeeze", {}, expiry_override=120)
    )
    gen.set_history("TEST", ranging_candles)
    signal = gen.evaluate("TEST")
    assert signal.strategy_id == "SBB-120"
    assert signal.expiry == 120


def test_default_route_off_mode_uses_rsi_bb_only(monkeypatch, ranging_candles):
    gen = _generator(zmr60_merge_mode="off")
    monkeypatch.setattr(sg, "sbb120", lambda candles: StrategyResult.none())
    monkeypatch.setattr(sg, "rsi_bb_bounce", lambda candles, hw: StrategyResult("PUT", 0.75, "bb", {}))

    def _unexpected(candles, hw):
        raise AssertionError("ZMR-60 should not run in off mode")

    monkeypatch.setattr(sg, "zmr60_with_high_winrate", _unexpected)
    gen.set_history("TEST", ranging_candles)
    assert gen.evaluate("TEST").strategy_id == "RSI-BB"


def test_unknown_regime_yields_nothing_on_default_route():
    gen = _generator(min_candles=10)
    gen.set_history("TEST", _candles(20))
    assert gen.get_regime("TEST").regime == "unknown"
    assert gen.evaluate("TEST") is None


def test_min_confidence_filter_counts(ranging_candles):
    gen = _generator(["always-put"], min_confidence=0.7)
    gen.set_history("TEST", ranging_candles)
    assert gen.evaluate("TEST") is None
    assert gen.get_stats()["signals_filtered"] == 1
    assert gen.get_stats()["signals_generated"] == 0


@pytest.mark.parametrize(
    "direction,regime,expected",
    [
        ("CALL", RegimeInfo("strong_uptrend", 45, 1), True),
        ("PUT", RegimeInfo("strong_uptrend", 45, 1), False),
        ("CALL", RegimeInfo("strong_downtrend", 45, -1), False),
        ("PUT", RegimeInfo("weak_uptrend", 30, 1), False),
        ("PUT", RegimeInfo("weak_uptrend", 29.9, 1), True),
        ("CALL", RegimeInfo("weak_downtrend", 35, -1), False),
        ("CALL", RegimeInfo("ranging", 10, 0), True),
    ],
)
def test_passes_trend_filter(direction, regime, expected):
    assert passes_trend_filter(direction, regime) is expected


def test_update_signal_result_only_once(caplog, ranging_candles):
    gen = _generator(["always-call"])
    gen.set_history("TEST", ranging_candles)
    signal = gen.evaluate("TEST")

    assert gen.update_signal_result(signal.id, "win") is True
    with caplog.at_level(logging.WARNING, logger="signal-generator"):
        assert gen.update_signal_result(signal.id, "loss") is False
    assert "already resolved" in caplog.text
    assert signal.status == "win"
    stats = gen.get_stats()["by_strategy"]["always-call"]
    assert stats == {"count": 1, "wins": 1, "losses": 0, "ties": 0}

    assert gen.update_signal_result("nope", "win") is False
    with pytest.raises(ValueError):
        gen.update_signal_result(signal.id, "draw")


def test_listeners_isolated_and_unsubscribe(ranging_candles):
    gen = _generator(["always-call"])
    gen.set_history("TEST", ranging_candles)
    seen: list[str] = []

    def _bad(signal):
        raise RuntimeError("listener failure")

    gen.on_signal(_bad)
    unsubscribe = gen.on_signal(lambda s: seen.append(s.id))
    assert gen.evaluate("TEST") is not None
    assert len(seen) == 1

    unsubscribe()
    unsubscribe()
    gen.evaluate("TEST")
    assert len(seen) == 1


def test_signal_log_and_get_signals(ranging_candles):
    gen = _generator(["always-call"], max_signal_log=3)
    gen.set_history("TEST", ranging_candles)
    for _ in range(5):
        gen.evaluate("TEST")
    signals = gen.get_signals(limit=10)
    assert [s.id for s in signals] == ["TEST-1700000000000-s3", "TEST-1700000000000-s4", "TEST-1700000000000-s5"]
    assert len(gen.get_signals(limit=2)) == 2
    assert gen.get_signals(limit=0) == []
    assert gen.get_stats()["signals_generated"] == 5


def test_load_strategy_config_switches_route(ranging_candles):
    gen = _generator()
    gen.set_history("TEST", ranging_candles)
    gen.load_strategy_config({"generatedAt": "2024-01-01T00:00:00Z", "symbols": {"TEST": {"strategies": ["always-put"]}}})
    assert gen.strategy_config.symbols["TEST"].strategies == ["always-put"]
    assert gen.evaluate("TEST").direction == "PUT"


def test_instances_are_independent(ranging_candles):
    a = create_signal_generator(SignalGeneratorConfig())
    b = create_signal_generator(SignalGeneratorConfig())
    a.set_history("TEST", ranging_candles)
    assert b.get_candles("TEST") == []
    assert b.get_regime("TEST") is None


def test_build_signal_report():
    assert build_signal_report([])["summary"] == "No signals generated yet"

    def _sig(i, status, sid="RSI-BB", regime="ranging"):
        return Signal(f"id{i}", 1_700_000_000_000 + i, "TEST", "CALL", sid, "r", regime, 0.75, 60, 100.0, {}, status)

    signals = [_sig(0, "win"), _sig(1, "win"), _sig(2, "win"), _sig(3, "loss"), _sig(4, "tie"), _sig(5, "pending")]
    report = build_signal_report(signals)
    summary = report["summary"]
    assert summary["win_rate"] == "75.0%"
    assert summary["completed"] == 4
    assert summary["pending"] == 1
    assert summary["ties"] == 1
    assert len(report["recent_signals"]) == 5
    assert report["recent_signals"][0]["confidence"] == "75%"
    assert "above target" in report["recommendation"]
    assert "Best performing strategy: RSI-BB (75.0%)" in report["recommendation"]
