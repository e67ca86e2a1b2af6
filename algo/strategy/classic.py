"""经典指标策略族：布林带、MACD、随机 RSI、SMMA+随机指标、Williams %R、CCI、ATR 通道。

全部是 `(candles, params) -> StrategyResult | None` 纯函数，参数声明在 catalog 里。
历史不足返回 None；条件不满足返回带指标的无观点结果。
"""

from __future__ import annotations

from typing import Mapping, Sequence

from algo.factors.atr import atr
from algo.factors.ma import bollinger_series, smma
from algo.factors.oscillators import cci_series, macd_series, stoch_rsi_series, stochastic_series, williams_r_series
from shared.models.models import CALL, PUT, Candle, StrategyResult

Params = Mapping[str, float]

SMMA_SHORT_PERIODS = (3, 5, 7, 9, 11, 13)
SMMA_LONG_PERIODS = (30, 35, 40, 45, 50)


def _conf(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return min(1.0, max(0.0, numerator / denominator))


def _hlc(candles: Sequence[Candle]) -> tuple[list[float], list[float], list[float]]:
    return [c.high for c in candles], [c.low for c in candles], [c.close for c in candles]


# --- 布林带 ---

def bollinger_bounce(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period, touch = int(params["period"]), params["touch_threshold"]
    if len(candles) < period + 2:
        return None
    closes = [c.close for c in candles]
    bands = bollinger_series(closes, period, params["std_dev"])
    if len(bands) < 2:
        return None
    cur, prev = bands[-1], bands[-2]
    price, prev_price = closes[-1], closes[-2]
    indicators = {
        "bbUpper": cur.upper,
        "bbMiddle": cur.middle,
        "bbLower": cur.lower,
        "price": price,
        "bandwidth": (cur.upper - cur.lower) / cur.middle if cur.middle else 0.0,
    }
    if prev_price <= prev.lower * (1 + touch) and price > prev_price:
        conf = _conf((price - prev_price) * 2, cur.middle - cur.lower)
        return StrategyResult(CALL, conf, "Bollinger lower band bounce", indicators)
    if prev_price >= prev.upper * (1 - touch) and price < prev_price:
        conf = _conf((prev_price - price) * 2, cur.upper - cur.middle)
        return StrategyResult(PUT, conf, "Bollinger upper band bounce", indicators)
    return StrategyResult.none(indicators=indicators)


def bollinger_breakout(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    """前一根在带内，随后 confirm_bars 根全部收在带外才算突破。"""
    period, bars = int(params["period"]), int(params["confirm_bars"])
    if len(candles) < period + bars + 1:
        return None
    closes = [c.close for c in candles]
    bands = bollinger_series(closes, period, params["std_dev"])
    if len(bands) < bars + 1:
        return None
    recent_bands = bands[-bars - 1:]
    recent = closes[-bars - 1:]
    cur = recent_bands[-1]
    price = recent[-1]
    indicators = {"bbUpper": cur.upper, "bbMiddle": cur.middle, "bbLower": cur.lower, "price": price}
    if not recent_bands[0].lower < recent[0] < recent_bands[0].upper:
        return StrategyResult.none(indicators=indicators)
    pairs = list(zip(recent[1:], recent_bands[1:]))
    if all(p > b.upper for p, b in pairs):
        conf = _conf(price - cur.upper, cur.upper - cur.middle)
        return StrategyResult(CALL, conf, "Bollinger bullish breakout", indicators)
    if all(p < b.lower for p, b in pairs):
        conf = _conf(cur.lower - price, cur.middle - cur.lower)
        return StrategyResult(PUT, conf, "Bollinger bearish breakout", indicators)
    return StrategyResult.none(indicators=indicators)


# --- MACD ---

def _macd(candles: Sequence[Candle], params: Params, need: int):
    fast, slow, sig = int(params["fast_period"]), int(params["slow_period"]), int(params["signal_period"])
    if len(candles) < slow + sig + need:
        return []
    return macd_series([c.close for c in candles], fast, slow, sig)


def macd_crossover(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    series = _macd(candles, params, 2)
    if len(series) < 2:
        return None
    cur, prev = series[-1], series[-2]
    indicators = {
        "macd": cur.macd,
        "signal": cur.signal,
        "histogram": cur.histogram,
        "prevMacd": prev.macd,
        "prevSignal": prev.signal,
    }
    if prev.macd <= prev.signal and cur.macd > cur.signal:
        return StrategyResult(CALL, _conf(abs(cur.histogram), 0.5), "MACD bullish crossover", indicators)
    if prev.macd >= prev.signal and cur.macd < cur.signal:
        return StrategyResult(PUT, _conf(abs(cur.histogram), 0.5), "MACD bearish crossover", indicators)
    return StrategyResult.none(indicators=indicators)


def macd_histogram_reversal(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    """零轴下方柱状图连续抬升（上方连续回落），且当前幅度不小于 min_histogram。"""
    series = _macd(candles, params, 3)
    if len(series) < 3:
        return None
    h2, h1, h0 = series[-3].histogram, series[-2].histogram, series[-1].histogram
    floor = params["min_histogram"]
    indicators = {"macd": series[-1].macd, "signal": series[-1].signal, "histogram": h0, "prevHistogram": h1}
    if h2 < h1 < 0 and h0 > h1 and abs(h0) >= floor:
        return StrategyResult(CALL, _conf(h0 - h1, floor), "MACD histogram bullish reversal", indicators)
    if h2 > h1 > 0 and h0 < h1 and abs(h0) >= floor:
        return StrategyResult(PUT, _conf(h1 - h0, floor), "MACD histogram bearish reversal", indicators)
    return StrategyResult.none(indicators=indicators)


# --- 随机 RSI ---

def stoch_rsi_crossover(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    rsi_p, stoch_p = int(params["rsi_period"]), int(params["stoch_period"])
    k_s, d_s = int(params["k_smooth"]), int(params["d_smooth"])
    oversold, overbought = params["oversold"], params["overbought"]
    if len(candles) < rsi_p + stoch_p + k_s + d_s + 1:
        return None
    series = stoch_rsi_series([c.close for c in candles], rsi_p, stoch_p, k_s, d_s)
    if len(series) < 2:
        return None
    cur, prev = series[-1], series[-2]
    indicators = {"stochRsiK": cur.k, "stochRsiD": cur.d, "prevK": prev.k, "prevD": prev.d}
    if prev.k <= prev.d and cur.k > cur.d and cur.k < oversold + 10:
        return StrategyResult(CALL, _conf(oversold + 10 - cur.k, 20), "StochRSI bullish crossover", indicators)
    if prev.k >= prev.d and cur.k < cur.d and cur.k > overbought - 10:
        return StrategyResult(PUT, _conf(cur.k - overbought + 10, 20), "StochRSI bearish crossover", indicators)
    return StrategyResult.none(indicators=indicators)


# --- SMMA 均线组 + 随机指标 ---

def smma_stochastic(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    """短 SMMA 组整体在长 SMMA 组之上（下）且随机指标在超卖（超买）区金叉（死叉）。"""
    if len(candles) < max(SMMA_LONG_PERIODS) + 5:
        return None
    highs, lows, closes = _hlc(candles)
    short = [smma(closes, p) for p in SMMA_SHORT_PERIODS]
    long_ = [smma(closes, p) for p in SMMA_LONG_PERIODS]
    if any(v is None for v in short + long_):
        return None
    stochs = stochastic_series(
        highs, lows, closes, int(params["stoch_k"]), int(params["stoch_d"]), int(params["stoch_smooth"])
    )
    if len(stochs) < 2:
        return None
    cur, prev = stochs[-1], stochs[-2]
    oversold, overbought = params["oversold"], params["overbought"]
    strength, tolerance = int(params["trend_strength"]), params["overlap_tolerance"]

    above = sum(1 for s in short if s > max(long_))
    below = sum(1 for s in short if s < min(long_))
    overlap = max(0.0, min(max(short), max(long_)) - max(min(short), min(long_)))
    overlap_pct = overlap / closes[-1] * 100 if closes[-1] else 0.0
    n_short = len(SMMA_SHORT_PERIODS)
    indicators = {
        "stochK": cur.k,
        "stochD": cur.d,
        "prevStochK": prev.k,
        "prevStochD": prev.d,
        "shortAboveLong": float(above),
        "shortBelowLong": float(below),
        "overlapPercent": overlap_pct,
        "shortMAAvg": sum(short) / n_short,
        "longMAAvg": sum(long_) / len(long_),
    }
    golden = prev.k < prev.d and cur.k >= cur.d
    dead = prev.k > prev.d and cur.k <= cur.d
    if above >= strength and overlap_pct <= tolerance and golden and (prev.k < oversold or cur.k < oversold + 10):
        conf = _conf(above / n_short * 0.5 * 40 + (oversold - min(prev.k, cur.k)) * 0.5, 40)
        return StrategyResult(CALL, conf, f"Uptrend ({above}/{n_short} SMMA above) + Stoch golden cross", indicators)
    if below >= strength and overlap_pct <= tolerance and dead and (prev.k > overbought or cur.k > overbought - 10):
        conf = _conf(below / n_short * 0.5 * 40 + (max(prev.k, cur.k) - overbought) * 0.5, 40)
        return StrategyResult(PUT, conf, f"Downtrend ({below}/{n_short} SMMA below) + Stoch dead cross", indicators)
    return StrategyResult.none(indicators=indicators)


# --- Williams %R ---

def williams_r_ob_os(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period = int(params["period"])
    oversold, overbought = params["oversold"], params["overbought"]
    if len(candles) < period + 1:
        return None
    series = williams_r_series(*_hlc(candles), period)
    if len(series) < 2:
        return None
    cur, prev = series[-1], series[-2]
    indicators = {"williamsR": cur, "prevWilliamsR": prev}
    if prev < oversold <= cur:
        return StrategyResult(CALL, _conf(abs(prev - oversold), 20), "Williams %R oversold reversal", indicators)
    if prev > overbought >= cur:
        return StrategyResult(PUT, _conf(abs(prev - overbought), 20), "Williams %R overbought reversal", indicators)
    return StrategyResult.none(indicators=indicators)


def williams_r_middle_cross(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period, bars, middle = int(params["period"]), int(params["confirm_bars"]), params["middle_line"]
    if len(candles) < period + bars:
        return None
    series = williams_r_series(*_hlc(candles), period)
    if len(series) < bars + 1:
        return None
    recent = series[-bars - 1:]
    first, cur = recent[0], recent[-1]
    indicators = {"williamsR": cur, "prevWilliamsR": first}
    if first < middle and all(v >= middle for v in recent[1:]):
        return StrategyResult(CALL, _conf(cur - middle, 30), "Williams %R bullish middle cross", indicators)
    if first > middle and all(v <= middle for v in recent[1:]):
        return StrategyResult(PUT, _conf(middle - cur, 30), "Williams %R bearish middle cross", indicators)
    return StrategyResult.none(indicators=indicators)


# --- CCI ---

def cci_ob_os(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period = int(params["period"])
    oversold, overbought = params["oversold"], params["overbought"]
    if len(candles) < period + 1:
        return None
    series = cci_series(*_hlc(candles), period)
    if len(series) < 2:
        return None
    cur, prev = series[-1], series[-2]
    indicators = {"cci": cur, "prevCci": prev}
    if prev < oversold <= cur:
        return StrategyResult(CALL, _conf(abs(prev - oversold), 50), "CCI oversold reversal", indicators)
    if prev > overbought >= cur:
        return StrategyResult(PUT, _conf(abs(prev - overbought), 50), "CCI overbought reversal", indicators)
    return StrategyResult.none(indicators=indicators)


def cci_zero_cross(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    period, bars = int(params["period"]), int(params["confirm_bars"])
    if len(candles) < period + bars:
        return None
    series = cci_series(*_hlc(candles), period)
    if len(series) < bars + 1:
        return None
    recent = series[-bars - 1:]
    first, cur = recent[0], recent[-1]
    indicators = {"cci": cur, "prevCci": first}
    if first < 0 and all(v >= 0 for v in recent[1:]):
        return StrategyResult(CALL, _conf(cur, 100), "CCI bullish zero cross", indicators)
    if first > 0 and all(v <= 0 for v in recent[1:]):
        return StrategyResult(PUT, _conf(-cur, 100), "CCI bearish zero cross", indicators)
    return StrategyResult.none(indicators=indicators)


# --- ATR 通道 ---

def atr_channel_breakout(candles: Sequence[Candle], params: Params) -> StrategyResult | None:
    """收盘价穿越 前 lookback 根高（低）点 ± ATR*multiplier 的通道。"""
    period, lookback, mult = int(params["atr_period"]), int(params["lookback"]), params["multiplier"]
    if len(candles) < max(period + 1, lookback) + 1:
        return None
    highs, lows, closes = _hlc(candles)
    value = atr(highs, lows, closes, period)
    if value is None:
        return None
    prev_high = max(highs[-lookback - 1:-1])
    prev_low = min(lows[-lookback - 1:-1])
    upper = prev_high + value * mult
    lower = prev_low - value * mult
    price, prev_price = closes[-1], closes[-2]
    indicators = {
        "atr": value,
        "prevHigh": prev_high,
        "prevLow": prev_low,
        "upperBreakout": upper,
        "lowerBreakout": lower,
        "price": price,
    }
    if prev_price < upper <= price:
        return StrategyResult(CALL, _conf(price - upper, value), "ATR breakout above channel", indicators)
    if prev_price > lower >= price:
        return StrategyResult(PUT, _conf(lower - price, value), "ATR breakout below channel", indicators)
    return StrategyResult.none(indicators=indicators)
