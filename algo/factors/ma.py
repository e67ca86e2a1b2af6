"""均线类指标：SMA / EMA / SMMA / Bollinger Bands。

所有函数无状态；窗口不足或 period<=0 时返回 None（序列版本返回空列表）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Sequence

import pandas as pd

from algo.factors.base import as_floats, pad_left, require_columns


class BollingerBands(NamedTuple):
    upper: float
    middle: float
    lower: float


def sma(values: Sequence[float], period: int) -> float | None:
    if period <= 0 or len(values) < period:
        return None
    return sum(values[-period:]) / period


def ema_series(values: Sequence[float], period: int) -> list[float]:
    """EMA 序列，首值用前 period 个值的 SMA 作为种子，对应下标 period-1 起。"""
    if period <= 0 or len(values) < period:
        return []
    multiplier = 2 / (period + 1)
    current = sum(values[:period]) / period
    out = [current]
    for x in values[period:]:
        current = (x - current) * multiplier + current
        out.append(current)
    return out


def ema(values: Sequence[float], period: int) -> float | None:
    series = ema_series(values, period)
    return series[-1] if series else None


def smma_series(values: Sequence[float], period: int) -> list[float]:
    """平滑移动平均（Wilder），SMA 种子。"""
    if period <= 0 or len(values) < period:
        return []
    current = sum(values[:period]) / period
    out = [current]
    for x in values[period:]:
        current = (current * (period - 1) + x) / period
        out.append(current)
    return out


def smma(values: Sequence[float], period: int) -> float | None:
    series = smma_series(values, period)
    return series[-1] if series else None


def _bands(window: Sequence[float], period: int, std_dev: float) -> BollingerBands:
    middle = sum(window) / period
    variance = sum((v - middle) ** 2 for v in window) / period
    sd = math.sqrt(variance)
    return BollingerBands(middle + std_dev * sd, middle, middle - std_dev * sd)


def bollinger(values: Sequence[float], period: int = 20, std_dev: float = 2.0) -> BollingerBands | None:
    """布林带（总体标准差）。"""
    if period <= 0 or len(values) < period:
        return None
    return _bands(values[-period:], period, std_dev)


def bollinger_series(values: Sequence[float], period: int = 20, std_dev: float = 2.0) -> list[BollingerBands]:
    if period <= 0 or len(values) < period:
        return []
    return [_bands(values[i - period + 1:i + 1], period, std_dev) for i in range(period - 1, len(values))]


@dataclass(frozen=True)
class SMAFactor:
    """简单移动平均。"""

    period: int = 20
    price_col: str = "close"
    out_col: str | None = None
    name: str = "sma"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("SMA period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "price_col": self.price_col, "out_col": self.out_col})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.price_col], "SMAFactor")
        out = self.out_col or f"sma_{self.period}"
        df[out] = df[self.price_col].astype(float).rolling(self.period, min_periods=self.period).mean()
        return df


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA，SMA 种子）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "price_col": self.price_col, "out_col": self.out_col})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.price_col], "EMAFactor")
        out = self.out_col or f"ema_{self.period}"
        df[out] = pad_left(ema_series(as_floats(df[self.price_col]), self.period), len(df))
        return df


@dataclass(frozen=True)
class SMMAFactor:
    """平滑移动平均（SMMA）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "smma"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("SMMA period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "price_col": self.price_col, "out_col": self.out_col})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.price_col], "SMMAFactor")
        out = self.out_col or f"smma_{self.period}"
        df[out] = pad_left(smma_series(as_floats(df[self.price_col]), self.period), len(df))
        return df


@dataclass(frozen=True)
class BollingerFactor:
    """布林带：输出 `{prefix}_upper/_middle/_lower` 三列。"""

    period: int = 20
    std_dev: float = 2.0
    price_col: str = "close"
    prefix: str | None = None
    name: str = "bollinger"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("Bollinger period must be > 0")
        if self.std_dev <= 0:
            raise ValueError("Bollinger std_dev must be > 0")
        object.__setattr__(
            self,
            "params",
            {"period": self.period, "std_dev": self.std_dev, "price_col": self.price_col, "prefix": self.prefix},
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, [self.price_col], "BollingerFactor")
        prefix = self.prefix or f"bb_{self.period}"
        bands = bollinger_series(as_floats(df[self.price_col]), self.period, self.std_dev)
        df[f"{prefix}_upper"] = pad_left([b.upper for b in bands], len(df))
        df[f"{prefix}_middle"] = pad_left([b.middle for b in bands], len(df))
        df[f"{prefix}_lower"] = pad_left([b.lower for b in bands], len(df))
        return df
