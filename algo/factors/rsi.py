"""RSI 因子（Wilder 平滑）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import pandas as pd

from algo.factors.base import as_floats, pad_left, require_columns


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    # 平均跌幅为 0 时定义为 100（最强）
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi_series(values: Sequence[float], period: int = 14) -> list[float]:
    """RSI 序列，对应下标 period 起（每个值只依赖其之前的价格）。"""
    if period <= 0 or len(values) < period + 1:
        return []
    changes = [values[i] - values[i - 1] for i in range(1, len(values))]

    avg_gain = sum(c for c in changes[:period] if c > 0) / period
    avg_loss = sum(-c for c in changes[:period] if c <= 0) / period
    out = [_rsi_value(avg_gain, avg_loss)]

    for change in changes[period:]:
        gain = change if change > 0 else 0.0
        loss = -change if change <= 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out.append(_rsi_value(avg_gain, avg_loss))
    return out


def rsi(values: Sequence[float], period: int = 14) -> float | None:
    series = rsi_series(values, period)
    return series[-1] if series else None


@dataclass(frozen=True)
class RSIFactor:
    """相对强弱指数（RSI，Wilder 版本）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("RSI period must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "price_col": self.price_col,
                "out_col": self.out_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.price_col], "RSIFactor")
        out = self.out_col or f"rsi_{self.period}"
        df[out] = pad_left(rsi_series(as_floats(df[self.price_col]), self.period), len(df))
        return df
