"""Schema definitions for the leaderboard.

- LeaderboardEntry: 单策略一次回测的汇总（相对综合分 + 绝对等级）。
- LeaderboardResult: 一次排行榜运行的全部输出（条目 + 配置 + 运行元信息）。

序列化使用 snake_case；读取时同时接受 camelCase 键，便于导入外部工具产出的 JSON。
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from shared.config.schema import LeaderboardConfig
from utils.json_sanitize import restore_float, sanitize_for_json

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


def _snake_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_snake(k): v for k, v in data.items()}


@dataclass(frozen=True)
class DataRange:
    start: int = 0
    end: int = 0


@dataclass(frozen=True)
class LeaderboardEntry:
    strategy_id: str
    strategy_name: str
    params: Dict[str, float] = field(default_factory=dict)

    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    ties: int = 0
    win_rate: float = 0.0
    net_profit: float = 0.0
    net_profit_percent: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0

    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    max_consecutive_losses: int = 0
    max_consecutive_wins: int = 0
    recovery_factor: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0

    trading_days: int = 0
    trades_per_day: float = 0.0
    daily_volume: float = 0.0
    total_volume: float = 0.0
    days_to_volume_target: Optional[int] = None

    win_rate_std_dev: float = 0.0
    kelly_fraction: float = 0.0
    min_required_balance: float = 0.0

    composite_score: float = 0.0
    rank: int = 0
    absolute_score: Optional[float] = None
    grade: Optional[str] = None

    data_range: DataRange = field(default_factory=DataRange)
    candle_count: int = 0
    bet_amount: float = 0.0
    payout: float = 0.0
    expiry_seconds: int = 0
    created_at: int = 0

    def ranked(self, composite_score: float, rank: int) -> "LeaderboardEntry":
        return replace(self, composite_score=composite_score, rank=rank)

    def to_dict(self) -> Dict[str, Any]:
        return sanitize_for_json(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardEntry":
        raw = _snake_keys(data)
        known = {f.name for f in fields(cls)}
        kwargs = {k: restore_float(v) for k, v in raw.items() if k in known}
        dr = kwargs.get("data_range")
        if isinstance(dr, dict):
            kwargs["data_range"] = DataRange(int(dr.get("start", 0)), int(dr.get("end", 0)))
        kwargs["params"] = {k: float(v) for k, v in (kwargs.get("params") or {}).items()}
        return cls(**kwargs)


@dataclass(frozen=True)
class LeaderboardResult:
    entries: List[LeaderboardEntry]
    config: LeaderboardConfig
    executed_at: int
    total_strategies: int
    filtered_out: int
    execution_time_ms: int

    @property
    def symbol(self) -> str:
        return self.config.symbol

    def to_dict(self) -> Dict[str, Any]:
        return sanitize_for_json(
            {
                "entries": [e.to_dict() for e in self.entries],
                "config": self.config.model_dump(),
                "executed_at": self.executed_at,
                "total_strategies": self.total_strategies,
                "filtered_out": self.filtered_out,
                "execution_time_ms": self.execution_time_ms,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardResult":
        raw = _snake_keys(data)
        cfg_raw = _snake_keys(raw.get("config") or {})
        if isinstance(cfg_raw.get("weights"), dict):
            cfg_raw["weights"] = _snake_keys(cfg_raw["weights"])
        allowed = LeaderboardConfig.model_fields.keys()
        config = LeaderboardConfig.model_validate({k: v for k, v in cfg_raw.items() if k in allowed})
        return cls(
            entries=[LeaderboardEntry.from_dict(e) for e in raw.get("entries") or []],
            config=config,
            executed_at=int(raw.get("executed_at") or 0),
            total_strategies=int(raw.get("total_strategies") or 0),
            filtered_out=int(raw.get("filtered_out") or 0),
            execution_time_ms=int(raw.get("execution_time_ms") or 0),
        )


def is_leaderboard_result(obj: Any) -> bool:
    return isinstance(obj, dict) and "entries" in obj and "config" in obj and isinstance(obj["entries"], list)
