"""单策略二元期权回测引擎（BacktestEngine）。

流程：预处理 K 线 → 按时间范围截取 → 从第 50 根起逐根调用策略 →
按到期时间找出场 K 线结算 → 汇总余额/回撤/盈亏因子。
同一时刻最多持有一笔，结算后从出场 K 线继续推进。
"""

from __future__ import annotations

import itertools
import math
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Literal, Mapping, Sequence

import numpy as np
import pandas as pd

from algo.strategy.base import ParamSpec
from algo.strategy.registry import StrategyRegistry, default_registry
from engine.base_engine import BaseEngine
from market_data.loader import candles_to_frame, frame_to_candles
from shared.config.schema import BacktestConfig
from shared.models.models import CALL, Candle, StrategyResult
from utils.logging import setup_logger

logger = setup_logger("backtest")

LOOKBACK = 50

TradeOutcome = Literal["WIN", "LOSS", "TIE"]
SortKey = Literal["net_profit", "expectancy", "scorecard"]

# K 线原始列不随交易导出
TRADE_FEATURE_SKIP = frozenset({"timestamp", "open", "high", "low", "close", "volume"})


class InsufficientDataError(ValueError):
    """预处理后有效 K 线不足以回测。"""


@dataclass(frozen=True)
class BacktestTrade:
    entry_time: int
    entry_price: float
    exit_time: int
    exit_price: float
    direction: str
    result: TradeOutcome
    payout: float
    profit: float
    bet_amount: float
    strategy_signal: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class BacktestResult:
    config: BacktestConfig
    trades: tuple[BacktestTrade, ...]
    total_trades: int
    wins: int
    losses: int
    ties: int
    win_rate: float
    initial_balance: float
    final_balance: float
    net_profit: float
    net_profit_percent: float
    max_drawdown: float
    max_drawdown_percent: float
    profit_factor: float
    expectancy: float
    start_time: int | None
    end_time: int | None
    duration_ms: int
    equity_curve: tuple[tuple[int, float], ...] = ()
    data_quality: dict[str, int] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """不含逐笔交易与权益曲线的摘要。"""
        out = {k: v for k, v in asdict(self).items() if k not in {"trades", "equity_curve", "config"}}
        out["strategy_id"] = self.config.strategy_id
        out["strategy_params"] = dict(self.config.strategy_params)
        return out


def scorecard(result: BacktestResult) -> float:
    """expectancy * min(PF, 10) / (1 + MDD% / 100)。"""
    return result.expectancy * min(result.profit_factor, 10.0) / (1 + result.max_drawdown_percent / 100)


_SORT_KEYS = {
    "net_profit": lambda r: r.net_profit,
    "expectancy": lambda r: r.expectancy,
    "scorecard": scorecard,
}


def preprocess_candles(candles: Sequence[Candle]) -> tuple[list[Candle], dict[str, int]]:
    """排序 → 剔除非法 K 线 → 同一时间戳保留最后一根。

    非法：价格非有限或非正、low 高于 min(open, close)、high 低于 max(open, close)、时间戳非正。
    """
    df = candles_to_frame(candles)
    total = len(df)
    if df.empty:
        return [], {"total": 0, "invalid_removed": 0, "duplicates_removed": 0}
    df = df.sort_values("timestamp", kind="mergesort")

    prices = df[["open", "high", "low", "close"]].astype(float)
    valid = np.isfinite(prices).all(axis=1) & (prices > 0).all(axis=1)
    valid &= df["low"] <= df[["open", "close"]].min(axis=1)
    valid &= df["high"] >= df[["open", "close"]].max(axis=1)
    valid &= df["timestamp"] > 0
    df = df[valid]
    invalid_removed = total - len(df)

    before = len(df)
    df = df.drop_duplicates(subset="timestamp", keep="last")
    duplicates_removed = before - len(df)

    if invalid_removed:
        logger.warning("removed %d invalid candle(s)", invalid_removed)
    if duplicates_removed:
        logger.warning("removed %d duplicate timestamp(s)", duplicates_removed)
    quality = {"total": total, "invalid_removed": invalid_removed, "duplicates_removed": duplicates_removed}
    return frame_to_candles(df), quality


def determine_outcome(direction: str, entry_price: float, exit_price: float) -> TradeOutcome:
    if entry_price == exit_price:
        return "TIE"
    if direction == CALL:
        return "WIN" if exit_price > entry_price else "LOSS"
    return "WIN" if exit_price < entry_price else "LOSS"


def trade_profit(outcome: TradeOutcome, bet_amount: float, payout: float) -> float:
    if outcome == "WIN":
        return bet_amount * (payout / 100)
    if outcome == "LOSS":
        return -bet_amount
    return 0.0


def _grid_values(spec: ParamSpec | Iterable[float]) -> list[float]:
    if isinstance(spec, ParamSpec):
        return spec.values()
    return [float(v) for v in spec]


class BacktestEngine(BaseEngine):
    """单策略回测引擎；策略通过构造时传入的注册表按 id 查找。"""

    def __init__(self, registry: StrategyRegistry | None = None):
        self.registry = registry if registry is not None else default_registry()

    def run(self, config: BacktestConfig, candles: Sequence[Candle]) -> BacktestResult:
        """执行一次回测。

        Raises
        ------
        ValueError
            策略 id 不在注册表中。
        InsufficientDataError
            预处理后有效 K 线少于 50 根。
        """
        started = time.perf_counter()
        strategy = self.registry.require(config.strategy_id)
        params = strategy.resolve_params(config.strategy_params)

        cleaned, quality = preprocess_candles(candles)
        if len(cleaned) < LOOKBACK:
            raise InsufficientDataError(
                f"Not enough valid candles for backtest (got {len(cleaned)}, minimum {LOOKBACK})"
            )
        series = [
            c
            for c in cleaned
            if (config.start_time is None or c.timestamp >= config.start_time)
            and (config.end_time is None or c.timestamp <= config.end_time)
        ]

        balance = config.initial_balance
        max_balance = balance
        max_drawdown = 0.0
        trades: list[BacktestTrade] = []
        start_ts = config.start_time if config.start_time is not None else (series[0].timestamp if series else 0)
        equity: list[tuple[int, float]] = [(start_ts, balance)]
        expiry_ms = config.expiry_seconds * 1000

        i = LOOKBACK
        while i < len(series):
            current = series[i]
            result = strategy.evaluate(series[: i + 1], params)
            if not isinstance(result, StrategyResult) or not result.fired:
                i += 1
                continue

            bet = config.bet_amount if config.bet_type == "fixed" else balance * (config.bet_amount / 100)
            if bet > balance:
                i += 1
                continue

            entry_time = current.timestamp + config.latency_ms
            entry_candle = current
            if config.latency_ms > 0:
                entry_candle = next((c for c in series[i:] if c.timestamp >= entry_time), current)

            expiry_time = entry_time + expiry_ms
            exit_idx = next((j for j in range(i, len(series)) if series[j].timestamp >= expiry_time), None)
            if exit_idx is None:
                i += 1
                continue
            exit_candle = series[exit_idx]
            # 数据缺口导致出场过晚时放弃这笔
            if exit_candle.timestamp - expiry_time > expiry_ms * 2:
                i += 1
                continue

            sign = 1 if result.signal == CALL else -1
            entry_price = entry_candle.close + config.slippage * sign
            outcome = determine_outcome(result.signal, entry_price, exit_candle.close)
            profit = trade_profit(outcome, bet, config.payout)
            balance += profit

            trades.append(
                BacktestTrade(
                    entry_time=entry_time,
                    entry_price=entry_price,
                    exit_time=exit_candle.timestamp,
                    exit_price=exit_candle.close,
                    direction=result.signal,
                    result=outcome,
                    payout=config.payout,
                    profit=profit,
                    bet_amount=bet,
                    strategy_signal=dict(result.indicators),
                )
            )
            equity.append((exit_candle.timestamp, balance))
            max_balance = max(max_balance, balance)
            max_drawdown = max(max_drawdown, max_balance - balance)
            i = exit_idx + 1

        wins = sum(1 for t in trades if t.result == "WIN")
        losses = sum(1 for t in trades if t.result == "LOSS")
        ties = sum(1 for t in trades if t.result == "TIE")
        total = len(trades)
        gross_profit = sum(t.profit for t in trades if t.profit > 0)
        gross_loss = abs(sum(t.profit for t in trades if t.profit < 0))
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = math.inf if gross_profit > 0 else 0.0
        net = balance - config.initial_balance
        first_ts = series[0].timestamp if series else None
        last_ts = series[-1].timestamp if series else None

        return BacktestResult(
            config=config,
            trades=tuple(trades),
            total_trades=total,
            wins=wins,
            losses=losses,
            ties=ties,
            win_rate=wins / total * 100 if total else 0.0,
            initial_balance=config.initial_balance,
            final_balance=balance,
            net_profit=net,
            net_profit_percent=net / config.initial_balance * 100,
            max_drawdown=max_drawdown,
            max_drawdown_percent=max_drawdown / max_balance * 100 if max_balance > 0 else 0.0,
            profit_factor=profit_factor,
            expectancy=net / total if total else 0.0,
            start_time=config.start_time if config.start_time is not None else first_ts,
            end_time=config.end_time if config.end_time is not None else last_ts,
            duration_ms=int((time.perf_counter() - started) * 1000),
            equity_curve=tuple(equity),
            data_quality=quality,
        )

    def optimize(
        self,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        param_ranges: Mapping[str, ParamSpec | Iterable[float]] | None = None,
        sort_by: SortKey = "net_profit",
    ) -> list[BacktestResult]:
        """网格搜索参数组合，按 sort_by 降序返回；出错的组合跳过。

        param_ranges 缺省时使用策略声明的参数范围。
        """
        if sort_by not in _SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_by}")
        if param_ranges is None:
            param_ranges = self.registry.require(base_config.strategy_id).params
        keys = list(param_ranges)
        grids = [_grid_values(param_ranges[k]) for k in keys]
        combos = list(itertools.product(*grids)) if keys else [()]
        logger.info("optimizing %s with %d combinations", base_config.strategy_id, len(combos))

        results: list[BacktestResult] = []
        for combo in combos:
            params = {**base_config.strategy_params, **dict(zip(keys, combo))}
            cfg = base_config.model_copy(update={"strategy_params": params})
            try:
                results.append(self.run(cfg, candles))
            except Exception as exc:
                logger.debug("skip params %s: %s", params, exc)
        # product 已按参数元组有序，sorted 稳定，平局保持该顺序
        return sorted(results, key=_SORT_KEYS[sort_by], reverse=True)


def trades_to_frame(result: BacktestResult, features: pd.DataFrame | None = None) -> pd.DataFrame:
    """逐笔交易表。

    features 为带指标列的 K 线表（见 `candles_with_factors`）时，
    每笔交易按入场时间向前对齐到最近一根 K 线，附上该时刻的指标值。
    """
    rows = []
    for t in result.trades:
        row = asdict(t)
        row.pop("strategy_signal", None)
        rows.append(row)
    frame = pd.DataFrame(
        rows,
        columns=[
            "entry_time",
            "entry_price",
            "exit_time",
            "exit_price",
            "direction",
            "result",
            "payout",
            "profit",
            "bet_amount",
        ],
    )
    if features is None:
        return frame
    indicator_cols = [c for c in features.columns if c not in TRADE_FEATURE_SKIP]
    if frame.empty:
        return frame.reindex(columns=[*frame.columns, *indicator_cols])
    lookup = features[["timestamp", *indicator_cols]].sort_values("timestamp", kind="mergesort")
    merged = pd.merge_asof(
        frame.astype({"entry_time": "int64"}),
        lookup.astype({"timestamp": "int64"}),
        left_on="entry_time",
        right_on="timestamp",
        direction="backward",
    )
    return merged.drop(columns=["timestamp"])


def export_trades_csv(result: BacktestResult, path: str | Path, features: pd.DataFrame | None = None) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    trades_to_frame(result, features).to_csv(p, index=False)
    return p


def export_equity_csv(result: BacktestResult, path: str | Path) -> Path:
    """权益曲线：ts, equity, drawdown, drawdown_pct。"""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(list(result.equity_curve), columns=["ts", "equity"])
    peak = df["equity"].cummax()
    df["drawdown"] = peak - df["equity"]
    df["drawdown_pct"] = (df["drawdown"] / peak).where(peak > 0, 0.0)
    df.to_csv(p, index=False)
    return p
