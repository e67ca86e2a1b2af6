"""ADX / DI（Wilder 趋向指标）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple, Sequence

import pandas as pd

from algo.factors.base import pad_left, require_columns
from shared.models.models import Candle


class ADXResult(NamedTuple):
    adx: float
    plus_di: float
    minus_di: float


def _directional_moves(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]
) -> list[tuple[float, float, float]]:
    moves: list[tuple[float, float, float]] = []
    for i in range(1, len(highs)):
        up_move = highs[i] - highs[i - 1]
        down_move = lows[i - 1] - lows[i]
        plus_dm = up_move if (up_move > down_move and up_move > 0) else 0.0
        minus_dm = down_move if (down_move > up_move and down_move > 0) else 0.0
        tr = max(
            highs[i] - lows[i],
            abs(highs[i] - closes[i - 1]),
            abs(lows[i] - closes[i - 1]),
        )
        moves.append((plus_dm, minus_dm, tr))
    return moves


def _di(dm: float, tr: float) -> float:
    return dm / tr * 100.0 if tr > 0 else 0.0


def adx_series(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> list[ADXResult]:
    """ADX 序列，第一个值对应下标 2*period。"""
    n = min(len(highs), len(lows), len(closes))
    if period <= 0 or n < period * 2 + 1:
        return []
    moves = _directional_moves(highs[:n], lows[:n], closes[:n])

    s_plus = sum(m[0] for m in moves[:period])
    s_minus = sum(m[1] for m in moves[:period])
    s_tr = sum(m[2] for m in moves[:period])

    dis: list[tuple[float, float, float]] = []
    for plus_dm, minus_dm, tr in moves[period:]:
        s_plus = s_plus - s_plus / period + plus_dm
        s_minus = s_minus - s_minus / period + minus_dm
        s_tr = s_tr - s_tr / period + tr
        plus_di = _di(s_plus, s_tr)
        minus_di = _di(s_minus, s_tr)
        di_sum = plus_di + minus_di
        dx = abs(plus_di - minus_di) / di_sum * 100.0 if di_sum > 0 else 0.0
        dis.append((dx, plus_di, minus_di))

    if len(dis) < period:
        return []

    current = sum(d[0] for d in dis[:period]) / period
    out = [ADXResult(current, dis[period - 1][1], dis[period - 1][2])]
    for dx, plus_di, minus_di in dis[period:]:
        current = (current * (period - 1) + dx) / period
        out.append(ADXResult(current, plus_di, minus_di))
    return out


def adx(candles: Sequence[Candle], period: int = 14) -> ADXResult | None:
    """最新 ADX 与 ±DI；窗口少于 2*period+1 根返回 None。"""
    if len(candles) < period * 2 + 1:
        return None
    series = adx_series(
        [c.high for c in candles],
        [c.low for c in candles],
        [c.close for c in candles],
        period,
    )
    return series[-1] if series else None


@dataclass(frozen=True)
class ADXFactor:
    """ADX 因子：输出 adx / plus_di / minus_di 三列。"""

    period: int = 14
    high_col: str = "high"
    low_col: str = "low"
    close_col: str = "close"
    name: str = "adx"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ADX period must be > 0")
        object.__setattr__(self, "params", {"period": self.period})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.high_col, self.low_col, self.close_col], "ADXFactor")
        series = adx_series(
            df[self.high_col].astype(float).to_list(),
            df[self.low_col].astype(float).to_list(),
            df[self.close_col].astype(float).to_list(),
            self.period,
        )
        df["adx"] = pad_left([v.adx for v in series], len(df))
        df["plus_di"] = pad_left([v.plus_di for v in series], len(df))
        df["minus_di"] = pad_left([v.minus_di for v in series], len(df))
        return df
