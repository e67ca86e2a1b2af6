from __future__ import annotations

import pytest

from algo.strategy.base import ParamSpec, StrategyDefinition
from algo.strategy.high_winrate import bb_position, ema_trend_rsi_pullback, rsi_bb_bounce, vote
from algo.strategy.mean_reversion import ZMR60Config, zmr60, zmr60_with_high_winrate
from algo.strategy.registry import StrategyRegistry, default_registry
from algo.strategy.squeeze import SBB120Config, sbb120
from algo.strategy.trend import select_trend_strategy, v3_trend_pullback
from shared.models.models import Candle, RegimeInfo, StrategyResult


def _candles(closes: list[float], pad: float = 0.05) -> list[Candle]:
    out = []
    prev = closes[0]
    for i, c in enumerate(closes):
        out.append(
            Candle(
                timestamp=(i + 1) * 60_000,
                open=prev,
                high=max(prev, c) + pad,
                low=min(prev, c) - pad,
                close=c,
                volume=1.0,
            )
        )
        prev = c
    return out


def _selloff() -> list[Candle]:
    closes = [100.0 if i % 2 == 0 else 100.5 for i in range(30)] + [99.0 - i for i in range(10)]
    return _candles(closes)


def _rally() -> list[Candle]:
    closes = [100.0 if i % 2 == 0 else 100.5 for i in range(30)] + [101.5 + i for i in range(10)]
    return _candles(closes)


def _zmr_drop() -> list[Candle]:
    base = _candles([100.0 if i % 2 == 0 else 100.1 for i in range(80)])
    drop = Candle(timestamp=81 * 60_000, open=100.1, high=100.15, low=98.0, close=98.0, volume=1.0)
    return base + [drop]


def _squeeze(breakout_close: float) -> list[Candle]:
    wide = [100.0 if i % 2 == 0 else 102.0 for i in range(100)]
    candles = _candles(wide + [101.0] * 39, pad=0.01)
    if breakout_close > 101.0:
        last = Candle(140 * 60_000, 101.0, breakout_close + 0.05, 101.0, breakout_close, 1.0)
    else:
        last = Candle(140 * 60_000, 101.0, 101.0, breakout_close - 0.05, breakout_close, 1.0)
    return candles + [last]


def test_bb_position_zero_range_is_mid():
    assert bb_position(10.0, 10.0, 10.0) == 0.5
    assert bb_position(9.0, 12.0, 8.0) == pytest.approx(0.25)


def test_rsi_bb_bounce_call_on_selloff():
    result = rsi_bb_bounce(_selloff())
    assert result.signal == "CALL"
    assert result.confidence == 0.75
    assert result.indicators["bbPosition"] < 0.15


def test_rsi_bb_bounce_put_on_rally():
    result = rsi_bb_bounce(_rally())
    assert result.signal == "PUT"
    assert result.indicators["rsi"] > 75


def test_high_winrate_strategies_need_history():
    short = _selloff()[:29]
    assert not rsi_bb_bounce(short).fired
    assert not ema_trend_rsi_pullback(short).fired
    assert rsi_bb_bounce(short).reason == "Insufficient data"


def test_vote_reports_counts():
    result = vote(_selloff(), min_votes=1)
    assert result.signal == "CALL"
    assert result.indicators["callVotes"] >= 1
    assert result.confidence == pytest.approx(result.indicators["callVotes"] / 5)


def test_vote_without_consensus():
    result = vote(_selloff(), min_votes=6)
    assert not result.fired
    assert "No consensus" in result.reason


def test_zmr60_fires_call_on_extreme_drop():
    result = zmr60(_zmr_drop())
    assert result.signal == "CALL"
    assert result.indicators["z"] <= -2.5
    assert result.indicators["wickRatio"] == 0.0
    # RSI 与布林带两项确认
    assert result.indicators["confirmCount"] == 2.0
    assert result.confidence == pytest.approx(0.85)


def test_zmr60_needs_min_candles_and_volatility():
    assert zmr60(_zmr_drop()[:79]).reason == "Insufficient data for ZMR-60"
    flat = _candles([100.0] * 90)
    assert zmr60(flat).reason == "Zero volatility, no signal"


def test_zmr60_confirm_min_three_blocks_two_confirms():
    result = zmr60(_zmr_drop(), {"confirm_min": 3})
    assert not result.fired
    assert result.indicators["confirmCount"] == 2.0


def test_zmr60_with_high_winrate_uses_shared_rsi():
    assert zmr60_with_high_winrate(_zmr_drop(), {"rsi_period": 7}).signal == "CALL"


def test_zmr60_config_from_mapping_casts_ints():
    cfg = ZMR60Config.from_mapping({"lookback_returns": 30.0, "z_threshold": 2})
    assert cfg.lookback_returns == 30
    assert isinstance(cfg.lookback_returns, int)
    assert cfg.z_threshold == 2.0


def test_sbb120_call_breakout_after_squeeze():
    result = sbb120(_squeeze(101.5))
    assert result.signal == "CALL"
    assert result.expiry_override == 120
    assert result.indicators["wasSqueeze"] == 1.0
    assert 0.6 < result.confidence <= 0.9


def test_sbb120_put_breakout_after_squeeze():
    result = sbb120(_squeeze(100.5))
    assert result.signal == "PUT"


def test_sbb120_no_squeeze_on_wide_market():
    closes = [100.0 if i % 2 == 0 else 102.0 for i in range(139)] + [101.0]
    result = sbb120(_candles(closes))
    assert not result.fired


def test_sbb120_insufficient_data():
    assert sbb120(_squeeze(101.5)[:139]).reason == "Insufficient data for SBB-120"
    assert SBB120Config.from_mapping({"lookback_squeeze": 60.0}).lookback_squeeze == 60


def test_v3_trend_needs_50_candles():
    regime = RegimeInfo("strong_uptrend", 45.0, 1)
    result = v3_trend_pullback(_candles([100 + i for i in range(49)]), regime)
    assert result.reason == "Insufficient data for V3 trend"


def test_select_trend_strategy_none_when_nothing_fires():
    regime = RegimeInfo("strong_uptrend", 45.0, 1)
    assert select_trend_strategy(_candles([100.0 + i for i in range(30)]), regime) is None


def test_param_spec_values_and_validation():
    assert ParamSpec(2, 1, 3, 0.5).values() == [1.0, 1.5, 2.0, 2.5, 3.0]
    with pytest.raises(ValueError):
        ParamSpec(1, 2, 1, 1)
    with pytest.raises(ValueError):
        ParamSpec(1, 0, 1, 0)


def test_strategy_definition_resolves_params():
    seen = {}

    def _evaluate(candles, params):
        seen.update(params)
        return StrategyResult.none()

    definition = StrategyDefinition("demo", "Demo", _evaluate, {"a": ParamSpec(1, 0, 2, 1), "b": ParamSpec(5, 5, 5, 1)})
    definition([], {"a": 2})
    assert seen == {"a": 2, "b": 5}
    assert definition.param_grid() == {"a": [0.0, 1.0, 2.0], "b": [5.0]}


def test_registry_contents_and_duplicates():
    registry = default_registry()
    assert registry.ids() == [
        "rsi-ob-os",
        "rsi-bb",
        "rsi-stoch",
        "rsi-trend",
        "rsi-bb-bounce",
        "ema-pullback",
        "rsi-macd",
        "adx-rsi",
        "triple-confirm",
        "vote",
        "zmr-60",
        "sbb-120",
        "v3-trend",
        "bollinger-bounce",
        "bollinger-breakout",
        "macd-crossover",
        "macd-histogram-reversal",
        "stochrsi-crossover",
        "smma-stoch",
        "smma-stoch-aggressive",
        "williams-r-ob-os",
        "williams-r-middle-cross",
        "cci-ob-os",
        "cci-zero-cross",
        "atr-channel-breakout",
    ]
    assert "zmr-60" in registry
    assert registry.get("missing") is None
    with pytest.raises(ValueError, match="Unknown strategy"):
        registry.require("missing")

    demo = StrategyDefinition("x", "X", lambda c, p: None)
    with pytest.raises(ValueError, match="Duplicate"):
        StrategyRegistry([demo, demo])


def test_builtin_strategies_evaluate_on_short_history_without_error():
    candles = _candles([100.0 + (i % 5) for i in range(12)])
    for definition in default_registry():
        result = definition(candles)
        assert result is None or not result.fired


def test_catalog_zmr_matches_direct_call():
    registry = default_registry()
    assert registry.require("zmr-60")(_zmr_drop()).signal == "CALL"
    assert registry.require("rsi-bb-bounce")(_selloff()).signal == "CALL"
