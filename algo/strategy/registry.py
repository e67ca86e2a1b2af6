"""策略注册表：id -> StrategyDefinition。

注册表在构造时一次性确定，构造后不可修改；需要不同策略集合时另建一个实例。
"""

from __future__ import annotations

from typing import Iterable, Iterator

from algo.strategy.base import StrategyDefinition
from algo.strategy.catalog import builtin_strategies


class StrategyRegistry:
    def __init__(self, definitions: Iterable[StrategyDefinition] = ()):
        items: dict[str, StrategyDefinition] = {}
        for definition in definitions:
            if definition.id in items:
                raise ValueError(f"Duplicate strategy id: {definition.id}")
            items[definition.id] = definition
        self._items = items

    def get(self, strategy_id: str) -> StrategyDefinition | None:
        return self._items.get(strategy_id)

    def require(self, strategy_id: str) -> StrategyDefinition:
        if strategy_id not in self._items:
            raise ValueError(f"Unknown strategy: {strategy_id}")
        return self._items[strategy_id]

    def ids(self) -> list[str]:
        return list(self._items)

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._items

    def __iter__(self) -> Iterator[StrategyDefinition]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"StrategyRegistry({', '.join(self._items)})"


def default_registry() -> StrategyRegistry:
    """内置策略目录组成的新注册表。"""
    return StrategyRegistry(builtin_strategies())
