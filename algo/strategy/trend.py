"""趋势行情下的回调入场策略与路由。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from algo.factors.ma import smma
from algo.factors.oscillators import stochastic
from algo.factors.rsi import rsi
from algo.strategy.high_winrate import HighWinRateInput, ema_trend_rsi_pullback
from shared.models.models import CALL, PUT, Candle, RegimeInfo, StrategyResult


@dataclass(frozen=True)
class V3TrendConfig:
    smma_fast: int = 5
    smma_mid: int = 12
    smma_slow: int = 25
    stoch_k: int = 5
    stoch_d: int = 3
    rsi_period: int = 14


def v3_trend_pullback(
    candles: Sequence[Candle],
    regime: RegimeInfo,
    config: V3TrendConfig | None = None,
) -> StrategyResult:
    """SMMA 多头/空头排列中，价格回落到 fast/mid 之间，随机指标与 RSI 确认。"""
    cfg = config or V3TrendConfig()
    if len(candles) < 50:
        return StrategyResult.none("Insufficient data for V3 trend")

    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]

    s_fast = smma(closes, cfg.smma_fast)
    s_mid = smma(closes, cfg.smma_mid)
    s_slow = smma(closes, cfg.smma_slow)
    st = stochastic(highs, lows, closes, cfg.stoch_k, cfg.stoch_d)
    cur_rsi = rsi(closes, cfg.rsi_period)
    if s_fast is None or s_mid is None or s_slow is None or st is None or cur_rsi is None:
        return StrategyResult.none("Not enough indicator data")

    price = closes[-1]
    indicators = {
        "sFast": s_fast,
        "sMid": s_mid,
        "sSlow": s_slow,
        "stochK": st.k,
        "stochD": st.d,
        "rsi": cur_rsi,
        "price": price,
    }

    if s_fast > s_mid > s_slow and regime.direction >= 0:
        if s_mid <= price <= s_fast and st.k < 35 and st.k > st.d and cur_rsi > 48:
            return StrategyResult(
                CALL, 0.75, f"V3 uptrend pullback: stoch={st.k:.1f}, RSI={cur_rsi:.1f}", indicators
            )
    if s_fast < s_mid < s_slow and regime.direction <= 0:
        if s_fast <= price <= s_mid and st.k > 65 and st.k < st.d and cur_rsi < 52:
            return StrategyResult(
                PUT, 0.75, f"V3 downtrend pullback: stoch={st.k:.1f}, RSI={cur_rsi:.1f}", indicators
            )
    return StrategyResult.none("No V3 trend pullback signal", indicators)


def select_trend_strategy(
    candles: Sequence[Candle],
    regime: RegimeInfo,
    hw: HighWinRateInput = None,
) -> StrategyResult | None:
    """按优先级尝试：EMA-PULLBACK -> V3-TREND，返回第一个有方向的结果。"""
    ema_result = ema_trend_rsi_pullback(candles, hw)
    if ema_result.fired:
        return ema_result.with_id("EMA-PULLBACK")
    v3_result = v3_trend_pullback(candles, regime)
    if v3_result.fired:
        return v3_result.with_id("V3-TREND")
    return None
