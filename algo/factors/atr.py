"""ATR 因子（Wilder 平滑的平均真实波幅）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import pandas as pd

from algo.factors.base import pad_left, require_columns


def true_ranges(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]) -> list[float]:
    """真实波幅序列，第一个值对应下标 1（需要前收盘）。"""
    n = min(len(highs), len(lows), len(closes))
    return [
        max(highs[i] - lows[i], abs(highs[i] - closes[i - 1]), abs(lows[i] - closes[i - 1]))
        for i in range(1, n)
    ]


def atr_series(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
) -> list[float]:
    """ATR 序列，第一个值对应下标 period。"""
    trs = true_ranges(highs, lows, closes)
    if period <= 0 or len(trs) < period:
        return []
    current = sum(trs[:period]) / period
    out = [current]
    for tr in trs[period:]:
        current = (current * (period - 1) + tr) / period
        out.append(current)
    return out


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14) -> float | None:
    series = atr_series(highs, lows, closes, period)
    return series[-1] if series else None


@dataclass(frozen=True)
class ATRFactor:
    """平均真实波幅，输出 `atr_{period}` 列（或 out_col）。"""

    period: int = 14
    high_col: str = "high"
    low_col: str = "low"
    close_col: str = "close"
    out_col: str | None = None
    name: str = "atr"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ATR period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "out_col": self.out_col})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.high_col, self.low_col, self.close_col], "ATRFactor")
        out = self.out_col or f"atr_{self.period}"
        series = atr_series(
            df[self.high_col].astype(float).to_list(),
            df[self.low_col].astype(float).to_list(),
            df[self.close_col].astype(float).to_list(),
            self.period,
        )
        df[out] = pad_left(series, len(df))
        return df
