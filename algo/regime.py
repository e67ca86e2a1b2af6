"""市场状态（regime）识别：基于 ADX 强度与 ±DI 方向。"""

from __future__ import annotations

from typing import Sequence

from algo.factors.adx import adx
from shared.models.models import (
    RANGING,
    STRONG_DOWNTREND,
    STRONG_UPTREND,
    UNKNOWN,
    WEAK_DOWNTREND,
    WEAK_UPTREND,
    Candle,
    RegimeInfo,
)

STRONG_TREND_ADX = 40.0
TREND_ADX = 25.0


def classify_regime(adx_value: float, direction: int) -> str:
    """ADX>=40 强趋势，25<=ADX<40 弱趋势，其余横盘；方向为 0 时归为下行侧。"""
    if adx_value >= STRONG_TREND_ADX:
        return STRONG_UPTREND if direction > 0 else STRONG_DOWNTREND
    if adx_value >= TREND_ADX:
        return WEAK_UPTREND if direction > 0 else WEAK_DOWNTREND
    return RANGING


def detect_regime(candles: Sequence[Candle], period: int = 14) -> RegimeInfo:
    result = adx(candles, period)
    if result is None:
        return RegimeInfo(UNKNOWN, 0.0, 0)
    if result.plus_di > result.minus_di:
        direction = 1
    elif result.plus_di < result.minus_di:
        direction = -1
    else:
        direction = 0
    return RegimeInfo(classify_regime(result.adx, direction), result.adx, direction)


def is_trending(info: RegimeInfo) -> bool:
    return info.regime != UNKNOWN and info.adx >= TREND_ADX
