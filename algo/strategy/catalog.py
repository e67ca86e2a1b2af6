"""内置策略目录。

每个条目是一个 `StrategyDefinition`：id + 参数声明 + 纯函数 evaluate。
回测、排行榜与配置驱动的信号生成都只通过这里的 id 找到策略。
"""

from __future__ import annotations

from typing import Mapping, Sequence

from algo.factors.ma import bollinger
from algo.factors.oscillators import stochastic_series
from algo.factors.rsi import rsi_series
from algo.regime import detect_regime
from algo.strategy import classic
from algo.strategy.base import ParamSpec, StrategyDefinition
from algo.strategy.high_winrate import (
    adx_filtered_rsi,
    ema_trend_rsi_pullback,
    rsi_bb_bounce,
    rsi_macd,
    triple_confirmation,
    vote,
)
from algo.strategy.mean_reversion import ZMR60Config, zmr60
from algo.strategy.squeeze import SBB120Config, sbb120
from algo.strategy.trend import v3_trend_pullback
from shared.models.models import CALL, PUT, Candle, StrategyResult

Params = Mapping[str, float]


# --- RSI 家族 ---

def _rsi_ob_os(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period = int(params["period"])
    oversold, overbought = params["oversold"], params["overbought"]
    if len(candles) < period + 1:
        return None
    rsis = rsi_series([c.close for c in candles], period)
    if len(rsis) < 2:
        return None
    cur, prev = rsis[-1], rsis[-2]
    indicators = {"rsi": cur, "prevRsi": prev}
    if prev < oversold <= cur:
        return StrategyResult(CALL, min(1.0, (oversold - prev) / 10), "RSI oversold reversal", indicators)
    if prev > overbought >= cur:
        return StrategyResult(PUT, min(1.0, (prev - overbought) / 10), "RSI overbought reversal", indicators)
    return StrategyResult.none(indicators=indicators)


def _rsi_bollinger(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    rsi_period, bb_period = int(params["rsi_period"]), int(params["bb_period"])
    oversold, overbought = params["oversold"], params["overbought"]
    if len(candles) < max(rsi_period, bb_period) + 1:
        return None
    closes = [c.close for c in candles]
    rsis = rsi_series(closes, rsi_period)
    bands = bollinger(closes, bb_period, params["bb_std_dev"])
    if not rsis or bands is None:
        return None
    cur, price = rsis[-1], closes[-1]
    indicators = {
        "rsi": cur,
        "bbUpper": bands.upper,
        "bbMiddle": bands.middle,
        "bbLower": bands.lower,
        "price": price,
    }
    if cur < oversold and price <= bands.lower * 1.001:
        conf = min(1.0, (oversold - cur) / 20 + (bands.lower - price) / price)
        return StrategyResult(CALL, conf, "RSI oversold + BB lower touch", indicators)
    if cur > overbought and price >= bands.upper * 0.999:
        conf = min(1.0, (cur - overbought) / 20 + (price - bands.upper) / price)
        return StrategyResult(PUT, conf, "RSI overbought + BB upper touch", indicators)
    return StrategyResult.none(indicators=indicators)


def _rsi_stochastic(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    rsi_period = int(params["rsi_period"])
    k, d, smooth = int(params["stoch_k"]), int(params["stoch_d"]), int(params["stoch_smooth"])
    oversold, overbought = params["oversold"], params["overbought"]
    if len(candles) < max(rsi_period, k + d) + 1:
        return None
    closes = [c.close for c in candles]
    rsis = rsi_series(closes, rsi_period)
    stochs = stochastic_series([c.high for c in candles], [c.low for c in candles], closes, k, d, smooth)
    if not rsis or not stochs:
        return None
    cur, st = rsis[-1], stochs[-1]
    indicators = {"rsi": cur, "stochK": st.k, "stochD": st.d}
    if cur < oversold + 10 and st.k < oversold and st.d < oversold:
        conf = min(1.0, ((oversold - st.k) + (oversold + 10 - cur)) / 40)
        return StrategyResult(CALL, conf, "RSI + Stoch both oversold", indicators)
    if cur > overbought - 10 and st.k > overbought and st.d > overbought:
        conf = min(1.0, ((st.k - overbought) + (cur - overbought + 10)) / 40)
        return StrategyResult(PUT, conf, "RSI + Stoch both overbought", indicators)
    return StrategyResult.none(indicators=indicators)


def _rsi_trend(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period, bars = int(params["period"]), int(params["confirm_bars"])
    threshold = params["threshold"]
    if len(candles) < period + bars:
        return None
    rsis = rsi_series([c.close for c in candles], period)
    if len(rsis) < bars:
        return None
    recent = rsis[-bars:]
    cur = recent[-1]
    all_above = all(r > 50 + threshold for r in recent)
    all_below = all(r < 50 - threshold for r in recent)
    # 允许 1 点以内的回撤仍算单调
    rising = all(b >= a - 1 for a, b in zip(recent, recent[1:]))
    falling = all(b <= a + 1 for a, b in zip(recent, recent[1:]))
    indicators = {"rsi": cur, "rising": float(rising), "falling": float(falling)}
    if all_above and rising:
        return StrategyResult(CALL, min(1.0, (cur - 50) / 30), "RSI trend bullish", indicators)
    if all_below and falling:
        return StrategyResult(PUT, min(1.0, (50 - cur) / 30), "RSI trend bearish", indicators)
    return StrategyResult.none(indicators=indicators)


# --- 高胜率 / 专用策略的参数适配 ---

def _hw_cfg(params: Params) -> dict[str, float]:
    return {
        "rsi_period": int(params.get("rsi_period", 7)),
        "rsi_oversold": params.get("rsi_oversold", 25),
        "rsi_overbought": params.get("rsi_overbought", 75),
    }


def _high_winrate(fn):
    def evaluate(candles: Sequence[Candle], params: Params) -> StrategyResult:
        return fn(candles, _hw_cfg(params))

    evaluate.__name__ = fn.__name__
    return evaluate


def _vote(candles: Sequence[Candle], params: Params) -> StrategyResult:
    return vote(candles, int(params.get("min_votes", 3)), _hw_cfg(params))


def _zmr60(candles: Sequence[Candle], params: Params) -> StrategyResult:
    return zmr60(candles, ZMR60Config.from_mapping(params))


def _sbb120(candles: Sequence[Candle], params: Params) -> StrategyResult:
    return sbb120(candles, SBB120Config.from_mapping(params))


def _v3_trend(candles: Sequence[Candle], params: Params) -> StrategyResult:
    return v3_trend_pullback(candles, detect_regime(candles, int(params.get("adx_period", 14))))


_HW_PARAMS = {
    "rsi_period": ParamSpec(7, 5, 14, 1),
    "rsi_oversold": ParamSpec(25, 15, 35, 5),
    "rsi_overbought": ParamSpec(75, 65, 85, 5),
}


def builtin_strategies() -> list[StrategyDefinition]:
    """按固定顺序返回内置策略定义。"""
    return [
        StrategyDefinition(
            "rsi-ob-os",
            "RSI Overbought/Oversold",
            _rsi_ob_os,
            {
                "period": ParamSpec(14, 5, 30, 1),
                "oversold": ParamSpec(30, 20, 40, 5),
                "overbought": ParamSpec(70, 60, 80, 5),
            },
            "Trade reversals when RSI leaves extreme levels",
        ),
        StrategyDefinition(
            "rsi-bb",
            "RSI + Bollinger Bands",
            _rsi_bollinger,
            {
                "rsi_period": ParamSpec(14, 7, 21, 1),
                "bb_period": ParamSpec(20, 10, 30, 2),
                "bb_std_dev": ParamSpec(2, 1, 3, 0.5),
                "oversold": ParamSpec(30, 20, 40, 5),
                "overbought": ParamSpec(70, 60, 80, 5),
            },
            "RSI extremes confirmed by Bollinger Band touches",
        ),
        StrategyDefinition(
            "rsi-stoch",
            "RSI + Stochastic",
            _rsi_stochastic,
            {
                "rsi_period": ParamSpec(14, 7, 21, 1),
                "stoch_k": ParamSpec(14, 5, 21, 1),
                "stoch_d": ParamSpec(3, 2, 5, 1),
                "stoch_smooth": ParamSpec(3, 1, 5, 1),
                "oversold": ParamSpec(20, 10, 30, 5),
                "overbought": ParamSpec(80, 70, 90, 5),
            },
            "Double confirmation with RSI and Stochastic",
        ),
        StrategyDefinition(
            "rsi-trend",
            "RSI Trend Following",
            _rsi_trend,
            {
                "period": ParamSpec(14, 7, 21, 1),
                "threshold": ParamSpec(5, 2, 15, 1),
                "confirm_bars": ParamSpec(3, 2, 5, 1),
            },
            "Follow momentum while RSI stays away from 50",
        ),
        StrategyDefinition("rsi-bb-bounce", "RSI + BB Bounce", _high_winrate(rsi_bb_bounce), dict(_HW_PARAMS)),
        StrategyDefinition(
            "ema-pullback", "EMA Trend + RSI Pullback", _high_winrate(ema_trend_rsi_pullback), dict(_HW_PARAMS)
        ),
        StrategyDefinition("rsi-macd", "RSI + MACD", _high_winrate(rsi_macd), dict(_HW_PARAMS)),
        StrategyDefinition("adx-rsi", "Extreme RSI Reversal", _high_winrate(adx_filtered_rsi), dict(_HW_PARAMS)),
        StrategyDefinition(
            "triple-confirm", "RSI + Stoch + MACD", _high_winrate(triple_confirmation), dict(_HW_PARAMS)
        ),
        StrategyDefinition(
            "vote",
            "High Win-Rate Vote",
            _vote,
            {**_HW_PARAMS, "min_votes": ParamSpec(3, 2, 5, 1)},
            "Five high win-rate strategies vote; fire on min_votes agreement",
        ),
        StrategyDefinition(
            "zmr-60",
            "ZMR-60 Z-Score Mean Reversion",
            _zmr60,
            {
                "lookback_returns": ParamSpec(60, 30, 120, 10),
                "z_threshold": ParamSpec(2.5, 1.5, 3.5, 0.25),
                "rsi_period": ParamSpec(7, 5, 14, 1),
                "rsi_oversold": ParamSpec(25, 15, 35, 5),
                "rsi_overbought": ParamSpec(75, 65, 85, 5),
                "confirm_min": ParamSpec(2, 1, 3, 1),
            },
        ),
        StrategyDefinition(
            "sbb-120",
            "SBB-120 Squeeze Breakout",
            _sbb120,
            {
                "bb_period": ParamSpec(20, 10, 30, 5),
                "lookback_squeeze": ParamSpec(120, 60, 180, 30),
                "squeeze_percentile": ParamSpec(10, 5, 20, 5),
                "min_body_ratio": ParamSpec(0.55, 0.4, 0.7, 0.05),
                "vol_expansion_ratio": ParamSpec(1.2, 1.0, 1.6, 0.1),
            },
        ),
        StrategyDefinition(
            "v3-trend",
            "V3 SMMA Trend Pullback",
            _v3_trend,
            {"adx_period": ParamSpec(14, 7, 21, 7)},
        ),
        *classic_strategies(),
    ]


_BB_PARAMS = {
    "period": ParamSpec(20, 10, 30, 2),
    "std_dev": ParamSpec(2, 1.5, 3, 0.25),
}

_MACD_PARAMS = {
    "fast_period": ParamSpec(12, 8, 16, 1),
    "slow_period": ParamSpec(26, 20, 32, 2),
    "signal_period": ParamSpec(9, 6, 12, 1),
}

_SMMA_STOCH_PARAMS = {
    "stoch_k": ParamSpec(14, 5, 21, 1),
    "stoch_d": ParamSpec(3, 2, 5, 1),
    "stoch_smooth": ParamSpec(3, 1, 5, 1),
    "oversold": ParamSpec(20, 10, 30, 5),
    "overbought": ParamSpec(80, 70, 90, 5),
}


def classic_strategies() -> list[StrategyDefinition]:
    """布林带 / MACD / StochRSI / SMMA+Stoch / Williams %R / CCI / ATR 策略族。"""
    return [
        StrategyDefinition(
            "bollinger-bounce",
            "Bollinger Bounce",
            classic.bollinger_bounce,
            {**_BB_PARAMS, "touch_threshold": ParamSpec(0.001, 0.0005, 0.005, 0.0005)},
            "Fade touches of the outer Bollinger Bands",
        ),
        StrategyDefinition(
            "bollinger-breakout",
            "Bollinger Breakout",
            classic.bollinger_breakout,
            {**_BB_PARAMS, "confirm_bars": ParamSpec(2, 1, 3, 1)},
            "Follow closes that stay outside the bands",
        ),
        StrategyDefinition(
            "macd-crossover",
            "MACD Crossover",
            classic.macd_crossover,
            dict(_MACD_PARAMS),
            "MACD line crossing its signal line",
        ),
        StrategyDefinition(
            "macd-histogram-reversal",
            "MACD Histogram Reversal",
            classic.macd_histogram_reversal,
            {**_MACD_PARAMS, "min_histogram": ParamSpec(0.1, 0.05, 0.5, 0.05)},
            "Histogram turning back toward zero",
        ),
        StrategyDefinition(
            "stochrsi-crossover",
            "Stochastic RSI Crossover",
            classic.stoch_rsi_crossover,
            {
                "rsi_period": ParamSpec(14, 7, 21, 1),
                "stoch_period": ParamSpec(14, 7, 21, 1),
                "k_smooth": ParamSpec(3, 1, 5, 1),
                "d_smooth": ParamSpec(3, 1, 5, 1),
                "oversold": ParamSpec(20, 10, 30, 5),
                "overbought": ParamSpec(80, 70, 90, 5),
            },
            "%K/%D crossover of StochRSI near the extremes",
        ),
        StrategyDefinition(
            "smma-stoch",
            "SMMA + Stochastic",
            classic.smma_stochastic,
            {
                **_SMMA_STOCH_PARAMS,
                "trend_strength": ParamSpec(6, 3, 6, 1),
                "overlap_tolerance": ParamSpec(0, 0, 2, 1),
            },
            "Stacked SMMA trend with Stochastic cross from the extreme zone",
        ),
        StrategyDefinition(
            "smma-stoch-aggressive",
            "SMMA + Stochastic (Aggressive)",
            classic.smma_stochastic,
            {
                **_SMMA_STOCH_PARAMS,
                "trend_strength": ParamSpec(4, 3, 6, 1),
                "overlap_tolerance": ParamSpec(1, 0, 3, 1),
            },
            "Looser trend requirement for more frequent signals",
        ),
        StrategyDefinition(
            "williams-r-ob-os",
            "Williams %R Overbought/Oversold",
            classic.williams_r_ob_os,
            {
                "period": ParamSpec(14, 7, 21, 1),
                "overbought": ParamSpec(-20, -30, -10, 5),
                "oversold": ParamSpec(-80, -90, -70, 5),
            },
            "Williams %R leaving extreme levels",
        ),
        StrategyDefinition(
            "williams-r-middle-cross",
            "Williams %R Middle Cross",
            classic.williams_r_middle_cross,
            {
                "period": ParamSpec(14, 7, 21, 1),
                "middle_line": ParamSpec(-50, -60, -40, 5),
                "confirm_bars": ParamSpec(2, 1, 3, 1),
            },
            "Williams %R holding across the -50 line",
        ),
        StrategyDefinition(
            "cci-ob-os",
            "CCI Overbought/Oversold",
            classic.cci_ob_os,
            {
                "period": ParamSpec(20, 10, 30, 2),
                "overbought": ParamSpec(100, 80, 150, 10),
                "oversold": ParamSpec(-100, -150, -80, 10),
            },
            "CCI returning from beyond +-100",
        ),
        StrategyDefinition(
            "cci-zero-cross",
            "CCI Zero Cross",
            classic.cci_zero_cross,
            {
                "period": ParamSpec(20, 10, 30, 2),
                "confirm_bars": ParamSpec(2, 1, 3, 1),
            },
            "CCI holding across zero",
        ),
        StrategyDefinition(
            "atr-channel-breakout",
            "ATR Channel Breakout",
            classic.atr_channel_breakout,
            {
                "atr_period": ParamSpec(14, 7, 21, 1),
                "multiplier": ParamSpec(1.5, 0.5, 3.0, 0.25),
                "lookback": ParamSpec(20, 10, 50, 5),
            },
            "Close breaking the prior range widened by ATR",
        ),
    ]
