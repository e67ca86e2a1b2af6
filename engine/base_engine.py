"""执行引擎基类（模板模式）。

目标：
- 把“数据预处理/逐根推进”与“策略评估/结算/统计”解耦；
- 回测、参数搜索与排行榜共用同一套接口，避免逻辑漂移。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from shared.models.models import Candle


class BaseEngine(ABC):
    """引擎抽象基类：给定配置与 K 线序列，产出一次运行结果。"""

    @abstractmethod
    def run(self, config: Any, candles: Sequence[Candle]) -> Any:
        raise NotImplementedError
