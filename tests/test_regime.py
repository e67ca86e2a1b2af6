from __future__ import annotations

import pytest

from algo.regime import classify_regime, detect_regime, is_trending
from shared.models.models import Candle, RegimeInfo


def _candles(closes: list[float], spread: float = 1.0) -> list[Candle]:
    return [
        Candle(timestamp=(i + 1) * 60_000, open=c, high=c + spread, low=c - spread, close=c)
        for i, c in enumerate(closes)
    ]


@pytest.mark.parametrize(
    "adx_value,direction,expected",
    [
        (40.0, 1, "strong_uptrend"),
        (40.0, -1, "strong_downtrend"),
        (39.99, 1, "weak_uptrend"),
        (25.0, -1, "weak_downtrend"),
        (25.0, 0, "weak_downtrend"),
        (24.99, 1, "ranging"),
        (0.0, 0, "ranging"),
    ],
)
def test_classify_regime_boundaries(adx_value, direction, expected):
    assert classify_regime(adx_value, direction) == expected


def test_detect_regime_unknown_on_short_history():
    assert detect_regime(_candles([100.0] * 20)) == RegimeInfo("unknown", 0.0, 0)


def test_detect_regime_uptrend_and_downtrend():
    up = detect_regime(_candles([100 + i * 2 for i in range(60)]))
    assert up.regime == "strong_uptrend"
    assert up.direction == 1

    down = detect_regime(_candles([300 - i * 2 for i in range(60)]))
    assert down.regime == "strong_downtrend"
    assert down.direction == -1


def test_detect_regime_flat_is_ranging():
    info = detect_regime(_candles([100.0] * 60, spread=0.0))
    assert info.regime == "ranging"
    assert info.direction == 0


def test_is_trending():
    assert is_trending(RegimeInfo("weak_uptrend", 25.0, 1))
    assert not is_trending(RegimeInfo("ranging", 24.0, 1))
    assert not is_trending(RegimeInfo("unknown", 30.0, 0))
