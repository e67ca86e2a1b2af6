"""策略协议：身份 + 参数 schema + 纯函数 evaluate。

所有策略（内置或外部注册）都遵循同一个契约：
`evaluate(candles, params) -> StrategyResult | None`，无状态、只看传入窗口。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Protocol, Sequence

from shared.models.models import Candle, StrategyResult

EvaluateFn = Callable[[Sequence[Candle], Mapping[str, float]], "StrategyResult | None"]


@dataclass(frozen=True)
class ParamSpec:
    """单个参数的声明：默认值与搜索范围。"""
    default: float
    min: float
    max: float
    step: float

    def __post_init__(self):
        if self.min > self.max:
            raise ValueError("ParamSpec min must be <= max")
        if self.step <= 0:
            raise ValueError("ParamSpec step must be > 0")

    def values(self) -> list[float]:
        """min..max 按 step 展开（含端点，浮点误差内）。"""
        out: list[float] = []
        i = 0
        while True:
            v = self.min + i * self.step
            if v > self.max + self.step * 1e-9:
                break
            out.append(round(v, 10))
            i += 1
        return out


class Strategy(Protocol):
    """可注册策略协议。"""

    id: str
    name: str
    params: Mapping[str, ParamSpec]

    def evaluate(self, candles: Sequence[Candle], params: Mapping[str, float]) -> StrategyResult | None:
        ...


@dataclass(frozen=True)
class StrategyDefinition:
    """策略定义：把纯函数包装成统一契约。"""
    id: str
    name: str
    evaluate_fn: EvaluateFn
    params: Mapping[str, ParamSpec] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        if not self.id:
            raise ValueError("strategy id must be non-empty")

    def default_params(self) -> dict[str, float]:
        return {k: spec.default for k, spec in self.params.items()}

    def resolve_params(self, overrides: Mapping[str, float] | None = None) -> dict[str, float]:
        """声明默认值 + 覆盖值（覆盖值优先）。"""
        merged = self.default_params()
        if overrides:
            merged.update(overrides)
        return merged

    def param_grid(self) -> dict[str, list[float]]:
        return {k: spec.values() for k, spec in self.params.items()}

    def evaluate(self, candles: Sequence[Candle], params: Mapping[str, float]) -> StrategyResult | None:
        return self.evaluate_fn(candles, params)

    def __call__(self, candles: Sequence[Candle], params: Mapping[str, float] | None = None) -> StrategyResult | None:
        return self.evaluate(candles, self.resolve_params(params))


def default_params(strategy: Strategy) -> dict[str, float]:
    return {k: spec.default for k, spec in strategy.params.items()}
