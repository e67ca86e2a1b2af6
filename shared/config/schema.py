"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长回测或实时信号中“隐蔽爆炸”；
- 业务代码只读 schema 字段，不做 `cfg.get(...)` 式的深层字典索引。
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


MergeModeName = Literal["consensus", "best", "off"]
BetType = Literal["fixed", "percentage"]
ScoringProfile = Literal["default", "stability", "growth"]


class HighWinRateConfig(BaseModel):
    """均值回归类策略共用的 RSI 设置。"""
    rsi_period: int = Field(default=7, gt=0)
    rsi_oversold: float = 25.0
    rsi_overbought: float = 75.0
    model_config = ConfigDict(extra="forbid")


class ResampleConfig(BaseModel):
    """Tick -> K 线聚合配置。"""
    interval_seconds: int = Field(default=60, gt=0)
    min_ticks_per_candle: int = Field(default=1, ge=1)
    filter_payout: bool = True
    model_config = ConfigDict(extra="forbid")


class SignalGeneratorConfig(BaseModel):
    """信号生成器配置。

    说明：
    - `zmr60_merge_mode` 决定 RSI-BB 与 ZMR-60 在横盘时的合并方式；
    - buffer/log 上限也放在这里，便于测试缩小规模。
    """
    symbols: list[str] = Field(default_factory=lambda: ["BTCUSDT"])
    interval: str = "1m"
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    expiry_seconds: int = Field(default=60, gt=0)
    use_trend_filter: bool = True
    min_votes_for_signal: int = Field(default=2, ge=1)
    high_winrate: HighWinRateConfig = Field(default_factory=HighWinRateConfig)
    zmr60_merge_mode: MergeModeName = "consensus"
    max_candle_buffer: int = Field(default=250, gt=0)
    min_candles: int = Field(default=50, gt=0)
    max_signal_log: int = Field(default=200, gt=0)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_buffer(self) -> "SignalGeneratorConfig":
        if self.min_candles > self.max_candle_buffer:
            raise ValueError("min_candles must be <= max_candle_buffer")
        return self


class BacktestConfig(BaseModel):
    """单策略二元期权回测配置。时间为毫秒，None 表示不限制。"""
    symbol: str = ""
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    initial_balance: float = Field(default=1000.0, gt=0)
    bet_amount: float = Field(default=10.0, gt=0)
    bet_type: BetType = "fixed"
    payout: float = Field(default=92.0, gt=0)
    expiry_seconds: int = Field(default=60, gt=0)
    strategy_id: str = ""
    strategy_params: Dict[str, float] = Field(default_factory=dict)
    latency_ms: int = Field(default=0, ge=0)
    slippage: float = 0.0
    model_config = ConfigDict(extra="forbid")


class LeaderboardWeights(BaseModel):
    """相对综合分权重（合计必须为 1.0）。"""
    win_rate: float = 0.30
    profit_factor: float = 0.20
    max_drawdown: float = 0.15
    max_consecutive_losses: float = 0.10
    trades_per_day: float = 0.10
    recovery_factor: float = 0.15
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_sum(self) -> "LeaderboardWeights":
        total = (
            self.win_rate
            + self.profit_factor
            + self.max_drawdown
            + self.max_consecutive_losses
            + self.trades_per_day
            + self.recovery_factor
        )
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"leaderboard weights must sum to 1.0 (got {total:.6f})")
        return self


class ScoreWeights(BaseModel):
    """绝对评分各因子权重。"""
    win_rate: float = 0.30
    expected_value: float = 0.20
    max_drawdown: float = 0.15
    max_losing_streak: float = 0.10
    profit_factor: float = 0.10
    trade_count: float = 0.10
    consistency: float = 0.05
    model_config = ConfigDict(extra="forbid", frozen=True)


class LeaderboardConfig(BaseModel):
    """排行榜配置：公共回测参数 + 成交量目标 + 权重 + 过滤器。"""
    symbol: str = ""
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    initial_balance: float = Field(default=1000.0, gt=0)
    bet_amount: float = Field(default=10.0, gt=0)
    bet_type: BetType = "fixed"
    payout: float = Field(default=92.0, gt=0)
    expiry_seconds: int = Field(default=60, gt=0)
    volume_multiplier: float = Field(default=100.0, gt=0)
    weights: LeaderboardWeights = Field(default_factory=LeaderboardWeights)
    min_trades: int = Field(default=30, ge=0)
    min_win_rate: Optional[float] = None
    scoring_profile: ScoringProfile = "default"
    model_config = ConfigDict(extra="forbid")

    def effective_bet(self) -> float:
        if self.bet_type == "fixed":
            return self.bet_amount
        return self.initial_balance * (self.bet_amount / 100.0)

    def to_backtest_config(self, strategy_id: str, params: Dict[str, float]) -> BacktestConfig:
        return BacktestConfig(
            symbol=self.symbol,
            start_time=self.start_time,
            end_time=self.end_time,
            initial_balance=self.initial_balance,
            bet_amount=self.bet_amount,
            bet_type=self.bet_type,
            payout=self.payout,
            expiry_seconds=self.expiry_seconds,
            strategy_id=strategy_id,
            strategy_params=dict(params),
        )


class MainConfig(BaseModel):
    """应用总配置（YAML 顶层）。"""
    signal_generator: SignalGeneratorConfig = Field(default_factory=SignalGeneratorConfig)
    resample: ResampleConfig = Field(default_factory=ResampleConfig)
    leaderboard: LeaderboardConfig = Field(default_factory=LeaderboardConfig)
    strategy_config_path: Optional[str] = None
    # 回测导出逐笔交易时附带的指标列
    factors: List[Dict[str, Any]] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")

    @field_validator("factors")
    @classmethod
    def _check_factors(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        from algo.factors.registry import build_factors

        build_factors(v)
        return v

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # YAML 中写了空块（`resample:`）时按默认值处理
        if not isinstance(data, dict):
            return data
        return {k: v for k, v in data.items() if v is not None}
