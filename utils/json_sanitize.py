from __future__ import annotations

import math
from typing import Any

import numpy as np

_SPECIAL = {"inf": math.inf, "-inf": -math.inf, "nan": math.nan}


def sanitize_for_json(obj: Any) -> Any:
    """
    把 NaN/Inf 转成字符串，numpy 标量转成 Python 原生类型，避免写出非标准 JSON。
    """
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, float):
        if math.isnan(obj):
            return "nan"
        if math.isinf(obj):
            return "inf" if obj > 0 else "-inf"
        return obj
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    return obj


def restore_float(value: Any) -> Any:
    """sanitize_for_json 的逆操作：'inf' / '-inf' / 'nan' 还原为 float。"""
    if isinstance(value, str) and value in _SPECIAL:
        return _SPECIAL[value]
    return value
