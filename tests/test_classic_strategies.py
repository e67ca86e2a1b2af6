from __future__ import annotations

import math

import pytest

from algo.factors.oscillators import macd_series
from algo.strategy import classic
from algo.strategy.registry import default_registry
from shared.models.models import Candle


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


def _range(n: int = 30) -> list[float]:
    return [100.0 if i % 2 == 0 else 100.5 for i in range(n)]


def _run(strategy_id: str, candles: list[Candle]):
    return default_registry().require(strategy_id)(candles)


def test_bb_bounce_call_after_lower_band_touch():
    result = _run("bollinger-bounce", _candles(_range() + [97.0, 97.5]))
    assert result.signal == "CALL"
    assert 0 < result.confidence <= 1
    assert result.indicators["price"] == 97.5
    assert result.indicators["bbLower"] < result.indicators["bbMiddle"] < result.indicators["bbUpper"]


def test_bb_bounce_put_after_upper_band_touch():
    result = _run("bollinger-bounce", _candles(_range() + [103.5, 103.0]))
    assert result.signal == "PUT"


def test_bb_breakout_needs_closes_outside_band():
    result = _run("bollinger-breakout", _candles(_range() + [103.0, 104.0]))
    assert result.signal == "CALL"
    assert 0 < result.confidence <= 1

    result = _run("bollinger-breakout", _candles(_range() + [97.0, 96.0]))
    assert result.signal == "PUT"

    # 第二根回到带内，不算突破
    result = _run("bollinger-breakout", _candles(_range() + [103.0, 100.2]))
    assert not result.fired


def test_macd_cross_fires_where_series_crosses():
    closes = [100 + 3 * math.sin(i / 5) for i in range(120)]
    series = macd_series(closes, 12, 26, 9)
    offset = len(closes) - len(series)
    hits = [
        j
        for j in range(3, len(series))
        if series[j - 1].macd <= series[j - 1].signal and series[j].macd > series[j].signal
    ]
    assert hits
    j = hits[0]
    result = _run("macd-crossover", _candles(closes[: j + offset + 1]))
    assert result.signal == "CALL"
    assert result.confidence == pytest.approx(min(1.0, abs(series[j].histogram) / 0.5))

    # 交叉之后的下一根不再触发
    assert not _run("macd-crossover", _candles(closes[: j + offset + 2])).fired


def test_macd_histogram_reversal_respects_min_histogram():
    closes = [100 + 3 * math.sin(i / 5) for i in range(120)]
    series = macd_series(closes, 12, 26, 9)
    offset = len(closes) - len(series)
    hits = [
        j
        for j in range(4, len(series))
        if series[j - 2].histogram < series[j - 1].histogram < 0
        and series[j].histogram > series[j - 1].histogram
        and abs(series[j].histogram) >= 0.1
    ]
    assert hits
    result = _run("macd-histogram-reversal", _candles(closes[: hits[0] + offset + 1]))
    assert result.signal == "CALL"

    definition = default_registry().require("macd-histogram-reversal")
    strict = definition(_candles(closes[: hits[0] + offset + 1]), {"min_histogram": 100.0})
    assert not strict.fired


def test_stochrsi_flat_market_is_neutral():
    result = _run("stochrsi-crossover", _candles([100.0] * 60))
    assert not result.fired
    assert result.indicators["stochRsiK"] == 50.0
    assert _run("stochrsi-crossover", _candles([100.0] * 20)) is None


def test_smma_stoch_reports_trend_stack_without_cross():
    result = _run("smma-stoch", _candles([100.0 + i for i in range(60)]))
    assert not result.fired
    assert result.indicators["shortAboveLong"] == 6.0
    assert result.indicators["shortMAAvg"] > result.indicators["longMAAvg"]
    assert _run("smma-stoch", _candles([100.0 + i for i in range(54)])) is None


def test_smma_stoch_variants_share_evaluator_with_different_defaults():
    registry = default_registry()
    strict = registry.require("smma-stoch")
    loose = registry.require("smma-stoch-aggressive")
    assert strict.evaluate_fn is loose.evaluate_fn is classic.smma_stochastic
    assert strict.params["trend_strength"].default == 6
    assert loose.params["trend_strength"].default == 4
    assert loose.params["overlap_tolerance"].default == 1


def test_williams_r_reversal_from_oversold_and_overbought():
    falling = [120.0 - i for i in range(20)]
    result = _run("williams-r-ob-os", _candles(falling + [105.0]))
    assert result.signal == "CALL"
    assert result.indicators["prevWilliamsR"] < -80 <= result.indicators["williamsR"]
    assert result.confidence == pytest.approx(min(1.0, abs(result.indicators["prevWilliamsR"] + 80) / 20))

    rising = [80.0 + i for i in range(20)]
    assert _run("williams-r-ob-os", _candles(rising + [95.0])).signal == "PUT"


def test_williams_r_middle_cross_holds_for_confirm_bars():
    falling = [120.0 - i for i in range(20)]
    result = _run("williams-r-middle-cross", _candles(falling + [110.0, 112.0]))
    assert result.signal == "CALL"
    assert result.confidence == 1.0

    # 只有一根站上 -50
    result = _run("williams-r-middle-cross", _candles(falling + [110.0, 101.0]))
    assert not result.fired


def test_cci_reversal_from_oversold():
    falling = [130.0 - i for i in range(30)]
    result = _run("cci-ob-os", _candles(falling + [105.0]))
    assert result.signal == "CALL"
    assert result.indicators["prevCci"] < -100 <= result.indicators["cci"]


def test_cci_zero_short_history_and_flat():
    assert _run("cci-zero-cross", _candles([100.0] * 20)) is None
    result = _run("cci-zero-cross", _candles([100.0] * 40))
    assert not result.fired
    assert result.indicators["cci"] == 0.0


def test_atr_breakout_above_channel():
    result = _run("atr-channel-breakout", _candles(_range() + [103.0]))
    assert result.signal == "CALL"
    assert result.indicators["upperBreakout"] < 103.0
    assert result.confidence == 1.0

    result = _run("atr-channel-breakout", _candles(_range() + [97.5]))
    assert result.signal == "PUT"

    assert not _run("atr-channel-breakout", _candles(_range() + [100.2])).fired
