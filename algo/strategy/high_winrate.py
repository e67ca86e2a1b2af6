"""高胜率（多重确认）策略族。

目标是在 92% 赔率下胜率稳定高于盈亏平衡点（约 52.1%），
核心思路是用多个指标互相确认，而不是依赖单一指标。
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from algo.factors.ma import bollinger, ema_series
from algo.factors.oscillators import macd_series, stochastic_series
from algo.factors.rsi import rsi_series
from shared.config.schema import HighWinRateConfig
from shared.models.models import CALL, PUT, Candle, StrategyResult

HighWinRateInput = HighWinRateConfig | Mapping[str, Any] | None


def as_high_winrate(cfg: HighWinRateInput) -> HighWinRateConfig:
    if cfg is None:
        return HighWinRateConfig()
    if isinstance(cfg, HighWinRateConfig):
        return cfg
    allowed = HighWinRateConfig.model_fields.keys()
    return HighWinRateConfig(**{k: v for k, v in cfg.items() if k in allowed})


def bb_position(price: float, upper: float, lower: float) -> float:
    """价格在布林带内的位置：0=下轨，1=上轨；带宽为 0 时取 0.5。"""
    rng = upper - lower
    return (price - lower) / rng if rng > 0 else 0.5


def rsi_macd(candles: Sequence[Candle], cfg: HighWinRateInput = None) -> StrategyResult:
    """RSI 极值 + MACD 柱体确认。"""
    c = as_high_winrate(cfg)
    if len(candles) < 40:
        return StrategyResult.none("Insufficient data")
    closes = [x.close for x in candles]

    rsis = rsi_series(closes, c.rsi_period)
    if len(rsis) < 2:
        return StrategyResult.none("Not enough RSI data")
    cur_rsi, prev_rsi = rsis[-1], rsis[-2]

    macds = macd_series(closes)
    if len(macds) < 2:
        return StrategyResult.none("Not enough MACD data")
    cur, prev = macds[-1], macds[-2]

    indicators = {"rsi": cur_rsi, "macdHistogram": cur.histogram, "macd": cur.macd, "signal": cur.signal}

    if cur_rsi < c.rsi_oversold and prev_rsi <= cur_rsi:
        if cur.histogram > 0 or cur.histogram > prev.histogram:
            return StrategyResult(CALL, 0.7, f"RSI oversold ({cur_rsi:.1f}) + MACD bullish", indicators)
    if cur_rsi > c.rsi_overbought and prev_rsi >= cur_rsi:
        if cur.histogram < 0 or cur.histogram < prev.histogram:
            return StrategyResult(PUT, 0.7, f"RSI overbought ({cur_rsi:.1f}) + MACD bearish", indicators)
    return StrategyResult.none(indicators=indicators)


def rsi_bb_bounce(candles: Sequence[Candle], cfg: HighWinRateInput = None) -> StrategyResult:
    """RSI 超买超卖 + 价格触及布林带外侧区域。"""
    c = as_high_winrate(cfg)
    if len(candles) < 30:
        return StrategyResult.none("Insufficient data")
    closes = [x.close for x in candles]
    price = closes[-1]

    rsis = rsi_series(closes, c.rsi_period)
    if not rsis:
        return StrategyResult.none("Not enough RSI")
    cur_rsi = rsis[-1]

    bands = bollinger(closes, 20, 2)
    if bands is None:
        return StrategyResult.none("Not enough BB")
    pos = bb_position(price, bands.upper, bands.lower)

    indicators = {
        "rsi": cur_rsi,
        "bbPosition": pos,
        "price": price,
        "bbUpper": bands.upper,
        "bbLower": bands.lower,
    }
    if cur_rsi < c.rsi_oversold and pos < 0.15:
        return StrategyResult(CALL, 0.75, f"RSI {cur_rsi:.1f} + BB lower touch", indicators)
    if cur_rsi > c.rsi_overbought and pos > 0.85:
        return StrategyResult(PUT, 0.75, f"RSI {cur_rsi:.1f} + BB upper touch", indicators)
    return StrategyResult.none(indicators=indicators)


def adx_filtered_rsi(candles: Sequence[Candle], cfg: HighWinRateInput = None) -> StrategyResult:
    """RSI 极端区（<20 / >80）拐头反转。"""
    c = as_high_winrate(cfg)
    if len(candles) < 30:
        return StrategyResult.none("Insufficient data")
    rsis = rsi_series([x.close for x in candles], c.rsi_period)
    if len(rsis) < 2:
        return StrategyResult.none("Not enough RSI")
    cur_rsi, prev_rsi = rsis[-1], rsis[-2]
    indicators = {"rsi": cur_rsi, "prevRsi": prev_rsi}

    if cur_rsi < 20 and cur_rsi > prev_rsi:
        return StrategyResult(CALL, 0.65, f"RSI extreme oversold reversal {cur_rsi:.1f}", indicators)
    if cur_rsi > 80 and cur_rsi < prev_rsi:
        return StrategyResult(PUT, 0.65, f"RSI extreme overbought reversal {cur_rsi:.1f}", indicators)
    return StrategyResult.none(indicators=indicators)


def triple_confirmation(candles: Sequence[Candle], cfg: HighWinRateInput = None) -> StrategyResult:
    """RSI + Stochastic + MACD 三重确认。"""
    c = as_high_winrate(cfg)
    if len(candles) < 40:
        return StrategyResult.none("Insufficient data")
    highs = [x.high for x in candles]
    lows = [x.low for x in candles]
    closes = [x.close for x in candles]

    rsis = rsi_series(closes, c.rsi_period)
    if not rsis:
        return StrategyResult.none("Not enough RSI")
    cur_rsi = rsis[-1]

    stochs = stochastic_series(highs, lows, closes, 14, 3)
    if len(stochs) < 2:
        return StrategyResult.none("Not enough Stoch")
    st, prev_st = stochs[-1], stochs[-2]

    macds = macd_series(closes)
    if not macds:
        return StrategyResult.none("Not enough MACD")
    hist = macds[-1].histogram

    indicators = {"rsi": cur_rsi, "stochK": st.k, "stochD": st.d, "macdHistogram": hist}

    if cur_rsi < 35 and (st.k < 30 and st.k > prev_st.k and st.k > st.d) and hist > 0:
        return StrategyResult(CALL, 0.8, "Triple bullish confirmation", indicators)
    if cur_rsi > 65 and (st.k > 70 and st.k < prev_st.k and st.k < st.d) and hist < 0:
        return StrategyResult(PUT, 0.8, "Triple bearish confirmation", indicators)
    return StrategyResult.none("No triple confirmation", indicators)


def ema_trend_rsi_pullback(candles: Sequence[Candle], cfg: HighWinRateInput = None) -> StrategyResult:
    """EMA9/EMA21 定趋势，RSI 回调到中性区后顺势入场。"""
    c = as_high_winrate(cfg)
    if len(candles) < 50:
        return StrategyResult.none("Insufficient data")
    closes = [x.close for x in candles]
    price = closes[-1]

    ema9 = ema_series(closes, 9)
    ema21 = ema_series(closes, 21)
    if len(ema9) < 2 or len(ema21) < 2:
        return StrategyResult.none("Not enough EMA")
    fast, slow = ema9[-1], ema21[-1]
    uptrend = fast > slow and price > slow
    downtrend = fast < slow and price < slow

    rsis = rsi_series(closes, c.rsi_period)
    if len(rsis) < 2:
        return StrategyResult.none("Not enough RSI")
    cur_rsi, prev_rsi = rsis[-1], rsis[-2]

    indicators = {"rsi": cur_rsi, "ema9": fast, "ema21": slow, "price": price}
    if uptrend and 40 <= cur_rsi <= 55 and cur_rsi > prev_rsi:
        return StrategyResult(CALL, 0.7, f"Uptrend pullback: RSI {cur_rsi:.1f} bouncing", indicators)
    if downtrend and 45 <= cur_rsi <= 60 and cur_rsi < prev_rsi:
        return StrategyResult(PUT, 0.7, f"Downtrend pullback: RSI {cur_rsi:.1f} dropping", indicators)
    return StrategyResult.none("No trend pullback signal", indicators)


HIGH_WINRATE_STRATEGIES = {
    "rsi-macd": rsi_macd,
    "rsi-bb": rsi_bb_bounce,
    "adx-rsi": adx_filtered_rsi,
    "triple-confirm": triple_confirmation,
    "ema-pullback": ema_trend_rsi_pullback,
}


def vote(candles: Sequence[Candle], min_votes: int = 3, cfg: HighWinRateInput = None) -> StrategyResult:
    """五个高胜率策略投票，同向票数达到 min_votes 才出信号。"""
    call_votes = 0
    put_votes = 0
    merged: dict[str, float] = {}
    total = len(HIGH_WINRATE_STRATEGIES)

    for name, fn in HIGH_WINRATE_STRATEGIES.items():
        result = fn(candles, cfg)
        if result.signal == CALL:
            call_votes += 1
        elif result.signal == PUT:
            put_votes += 1
        for key, value in result.indicators.items():
            if isinstance(value, (int, float)):
                merged[f"{name}_{key}"] = float(value)

    merged["callVotes"] = float(call_votes)
    merged["putVotes"] = float(put_votes)

    if call_votes >= min_votes:
        return StrategyResult(CALL, call_votes / total, f"{call_votes}/{total} strategies agree: CALL", merged)
    if put_votes >= min_votes:
        return StrategyResult(PUT, put_votes / total, f"{put_votes}/{total} strategies agree: PUT", merged)
    return StrategyResult.none(
        f"No consensus: {call_votes} CALL, {put_votes} PUT (need {min_votes})", merged
    )
