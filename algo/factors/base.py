"""因子（Factors/Features）抽象协议与公共工具。"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

import numpy as np
import pandas as pd


class Factor(Protocol):
    """因子协议：`compute(df) -> df`。"""

    name: str
    params: Mapping[str, Any]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """对输入 df 添加/更新因子列并返回 df。"""
        ...


def require_columns(df: pd.DataFrame, cols: Sequence[str], owner: str) -> None:
    for col in cols:
        if col not in df.columns:
            raise ValueError(f"{owner} requires column: {col}")


def pad_left(values: Sequence[float], total: int) -> np.ndarray:
    """把尾部对齐的指标序列补齐为长度 total，预热段填 NaN。"""
    out = np.full(total, np.nan, dtype=float)
    n = len(values)
    if n:
        out[total - n:] = np.asarray(values, dtype=float)
    return out


def as_floats(series: pd.Series) -> list[float]:
    return series.astype(float).to_list()
