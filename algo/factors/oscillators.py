"""振荡类指标：MACD / Stochastic，以及阈值穿越判断。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple, Sequence

import pandas as pd

from algo.factors.base import as_floats, pad_left, require_columns
from algo.factors.ma import ema_series
from algo.factors.rsi import rsi_series


class MACDValue(NamedTuple):
    macd: float
    signal: float
    histogram: float


class StochasticValue(NamedTuple):
    k: float
    d: float


def macd_series(
    values: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> list[MACDValue]:
    """MACD 序列：每个 slow-1 起的前缀算一次 ema_fast-ema_slow，再对其取 EMA 作为信号线。"""
    if fast_period <= 0 or slow_period <= 0 or signal_period <= 0:
        return []
    if len(values) < max(fast_period, slow_period):
        return []
    fast = ema_series(values, fast_period)
    slow = ema_series(values, slow_period)
    start = max(fast_period, slow_period) - 1
    line = [
        fast[i - (fast_period - 1)] - slow[i - (slow_period - 1)]
        for i in range(start, len(values))
    ]
    signal = ema_series(line, signal_period)
    offset = signal_period - 1
    return [MACDValue(line[j + offset], s, line[j + offset] - s) for j, s in enumerate(signal)]


def macd(
    values: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDValue | None:
    if len(values) < slow_period + signal_period:
        return None
    series = macd_series(values, fast_period, slow_period, signal_period)
    return series[-1] if series else None


def _raw_k(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], k_period: int) -> list[float]:
    n = min(len(highs), len(lows), len(closes))
    out: list[float] = []
    for i in range(k_period - 1, n):
        highest = max(highs[i - k_period + 1:i + 1])
        lowest = min(lows[i - k_period + 1:i + 1])
        rng = highest - lowest
        # 区间为 0 时取中性值 50
        out.append(50.0 if rng == 0 else (closes[i] - lowest) / rng * 100.0)
    return out


def _rolling_mean(values: Sequence[float], period: int) -> list[float]:
    if period <= 1:
        return list(values)
    return [sum(values[i - period + 1:i + 1]) / period for i in range(period - 1, len(values))]


def stochastic_series(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    k_period: int = 14,
    d_period: int = 3,
    smooth: int = 1,
) -> list[StochasticValue]:
    """随机指标序列；smooth>1 时先对原始 %K 做 SMA 平滑，%D 为 %K 的 SMA。"""
    if k_period <= 0 or d_period <= 0 or smooth <= 0:
        return []
    k_values = _rolling_mean(_raw_k(highs, lows, closes, k_period), smooth)
    d_values = _rolling_mean(k_values, d_period)
    offset = d_period - 1
    return [StochasticValue(k_values[j + offset], d) for j, d in enumerate(d_values)]


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticValue | None:
    series = stochastic_series(highs, lows, closes, k_period, d_period)
    return series[-1] if series else None


def williams_r_series(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
) -> list[float]:
    """Williams %R 序列（-100..0），第一个值对应下标 period-1；区间为 0 时取 -50。"""
    n = min(len(highs), len(lows), len(closes))
    if period <= 0 or n < period:
        return []
    out: list[float] = []
    for i in range(period - 1, n):
        highest = max(highs[i - period + 1:i + 1])
        lowest = min(lows[i - period + 1:i + 1])
        rng = highest - lowest
        out.append(-50.0 if rng == 0 else (highest - closes[i]) / rng * -100.0)
    return out


def cci_series(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 20
) -> list[float]:
    """CCI 序列：(TP - SMA(TP)) / (0.015 * 平均绝对偏差)，偏差为 0 时取 0。"""
    n = min(len(highs), len(lows), len(closes))
    if period <= 0 or n < period:
        return []
    typical = [(highs[i] + lows[i] + closes[i]) / 3.0 for i in range(n)]
    out: list[float] = []
    for i in range(period - 1, n):
        window = typical[i - period + 1:i + 1]
        mean = sum(window) / period
        deviation = sum(abs(v - mean) for v in window) / period
        out.append(0.0 if deviation == 0 else (typical[i] - mean) / (0.015 * deviation))
    return out


def stoch_rsi_series(
    values: Sequence[float],
    rsi_period: int = 14,
    stoch_period: int = 14,
    k_smooth: int = 3,
    d_smooth: int = 3,
) -> list[StochasticValue]:
    """随机 RSI：对 RSI 序列做随机指标归一化（0..100），再做 %K/%D 平滑。"""
    if min(rsi_period, stoch_period, k_smooth, d_smooth) <= 0:
        return []
    rsis = rsi_series(values, rsi_period)
    if len(rsis) < stoch_period:
        return []
    raw: list[float] = []
    for i in range(stoch_period - 1, len(rsis)):
        window = rsis[i - stoch_period + 1:i + 1]
        lo, hi = min(window), max(window)
        raw.append(50.0 if hi == lo else (rsis[i] - lo) / (hi - lo) * 100.0)
    k_values = _rolling_mean(raw, k_smooth)
    d_values = _rolling_mean(k_values, d_smooth)
    offset = d_smooth - 1
    return [StochasticValue(k_values[j + offset], d) for j, d in enumerate(d_values)]


def cross_above(current: float, previous: float, threshold: float) -> bool:
    return previous < threshold and current >= threshold


def cross_below(current: float, previous: float, threshold: float) -> bool:
    return previous > threshold and current <= threshold


@dataclass(frozen=True)
class MACDFactor:
    """MACD：输出 macd / macd_signal / macd_hist 三列。"""

    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9
    price_col: str = "close"
    name: str = "macd"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if min(self.fast_period, self.slow_period, self.signal_period) <= 0:
            raise ValueError("MACD periods must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "fast_period": self.fast_period,
                "slow_period": self.slow_period,
                "signal_period": self.signal_period,
                "price_col": self.price_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.price_col], "MACDFactor")
        series = macd_series(as_floats(df[self.price_col]), self.fast_period, self.slow_period, self.signal_period)
        df["macd"] = pad_left([v.macd for v in series], len(df))
        df["macd_signal"] = pad_left([v.signal for v in series], len(df))
        df["macd_hist"] = pad_left([v.histogram for v in series], len(df))
        return df


@dataclass(frozen=True)
class StochasticFactor:
    """随机指标：输出 stoch_k / stoch_d 两列。"""

    k_period: int = 14
    d_period: int = 3
    smooth: int = 1
    high_col: str = "high"
    low_col: str = "low"
    close_col: str = "close"
    name: str = "stochastic"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if min(self.k_period, self.d_period, self.smooth) <= 0:
            raise ValueError("Stochastic periods must be > 0")
        object.__setattr__(
            self,
            "params",
            {"k_period": self.k_period, "d_period": self.d_period, "smooth": self.smooth},
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.high_col, self.low_col, self.close_col], "StochasticFactor")
        series = stochastic_series(
            as_floats(df[self.high_col]),
            as_floats(df[self.low_col]),
            as_floats(df[self.close_col]),
            self.k_period,
            self.d_period,
            self.smooth,
        )
        df["stoch_k"] = pad_left([v.k for v in series], len(df))
        df["stoch_d"] = pad_left([v.d for v in series], len(df))
        return df
