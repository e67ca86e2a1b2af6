import sys
from pathlib import Path

import pytest

# 测试内直接以顶层包名导入（algo / engine / research ...）
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.models.models import Candle  # noqa: E402


@pytest.fixture
def ranging_candles() -> list[Candle]:
    """60 根 100/100.5 来回震荡的 1 分钟 K 线；高低点恒定，ADX 为 0。"""
    out = []
    for i in range(60):
        close = 100.0 if i % 2 == 0 else 100.5
        out.append(Candle((i + 1) * 60_000, 100.5 - (close - 100.0), 100.55, 99.95, close, 1.0))
    return out
