"""指标因子注册表：配置项 `{type: ..., ...}` -> 因子实例 -> 挂到 K 线 DataFrame 上。

回测导出时用它给逐笔交易补上入场时刻的指标值，便于事后分析。
"""

from __future__ import annotations

from dataclasses import fields
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from algo.factors.adx import ADXFactor
from algo.factors.atr import ATRFactor
from algo.factors.base import Factor
from algo.factors.ma import BollingerFactor, EMAFactor, SMAFactor, SMMAFactor
from algo.factors.oscillators import MACDFactor, StochasticFactor
from algo.factors.rsi import RSIFactor
from market_data.loader import candles_to_frame
from shared.models.models import Candle

FACTOR_TYPES: dict[str, type] = {
    "sma": SMAFactor,
    "ema": EMAFactor,
    "smma": SMMAFactor,
    "bollinger": BollingerFactor,
    "rsi": RSIFactor,
    "macd": MACDFactor,
    "stochastic": StochasticFactor,
    "adx": ADXFactor,
    "atr": ATRFactor,
}

# 由 __post_init__ 回填，不允许从配置传入
_DERIVED_FIELDS = {"name", "params"}


def factor_arguments(cls: type) -> list[str]:
    return [f.name for f in fields(cls) if f.name not in _DERIVED_FIELDS]


def build_factor(item: Mapping[str, Any]) -> Factor:
    """单个配置项 -> 因子实例。

    参数可以平铺（`{type: rsi, period: 7}`），也可以放在 `params` 下，二者不能混用。
    未知类型或未知参数都会抛出 ValueError。
    """
    kind = item.get("type")
    if not kind:
        raise ValueError(f"factor item requires 'type': {dict(item)}")
    cls = FACTOR_TYPES.get(str(kind))
    if cls is None:
        raise ValueError(f"Unknown factor: {kind} (known: {', '.join(sorted(FACTOR_TYPES))})")

    flat = {k: v for k, v in item.items() if k != "type"}
    if "params" in flat:
        if len(flat) > 1:
            raise ValueError(f"factor '{kind}': put all arguments either under 'params' or inline")
        if not isinstance(flat["params"], Mapping):
            raise ValueError(f"factor '{kind}': params must be a mapping")
        flat = dict(flat["params"])

    allowed = factor_arguments(cls)
    unknown = sorted(set(flat) - set(allowed))
    if unknown:
        raise ValueError(f"factor '{kind}' got unknown arguments {unknown} (allowed: {allowed})")
    return cls(**flat)


def build_factors(items: Iterable[Mapping[str, Any]] | None) -> list[Factor]:
    if items is None:
        return []
    if isinstance(items, (str, bytes, Mapping)):
        raise ValueError("factors config must be a list of mappings")
    out: list[Factor] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError(f"factor item must be a mapping, got {type(item).__name__}")
        out.append(build_factor(item))
    return out


def apply_factors(df: pd.DataFrame, factors: Sequence[Factor]) -> pd.DataFrame:
    """在副本上依次计算因子，不修改调用方的 DataFrame。"""
    out = df.copy()
    for factor in factors:
        out = factor.compute(out)
    return out


def candles_with_factors(candles: Iterable[Candle], factors: Sequence[Factor]) -> pd.DataFrame:
    """K 线 -> 带指标列的 DataFrame（预热段为 NaN）。"""
    return apply_factors(candles_to_frame(candles), factors)
