"""策略排行榜：对注册表中每个策略回测、计算指标、相对打分并排名。

两种分数互不混用：
- composite_score：同一批次内 min-max 归一化后的加权和，只用于本次排名；
- absolute_score / grade：按固定阈值的绝对评分（见 research.scoring）。

排名是全序：综合分降序，平局按 strategy_id 升序，输入顺序不影响输出。
"""

from __future__ import annotations

import json
import math
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from statistics import pstdev
from typing import Any, Callable, Iterable, Sequence

from algo.strategy.base import StrategyDefinition
from algo.strategy.registry import StrategyRegistry, default_registry
from engine.backtest_engine import BacktestEngine, BacktestResult, BacktestTrade
from research.schemas import DataRange, LeaderboardEntry, LeaderboardResult
from research.scoring import ScoreInput, calculate_score, get_weights_by_profile
from research.statistics import calculate_detailed_statistics
from shared.config.schema import LeaderboardConfig, LeaderboardWeights
from shared.models.models import Candle
from utils.logging import setup_logger

logger = setup_logger("leaderboard")

PF_CAP = 10.0
RF_CAP = 50.0
MIN_TRADES_PER_WEEK = 5
BALANCE_DRAWDOWN_MULTIPLE = 3

ProgressCallback = Callable[[dict[str, Any]], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _utc(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)


def _trading_days(trades: Sequence[BacktestTrade]) -> int:
    return max(len({_utc(t.entry_time).date() for t in trades}), 1)


def weekly_win_rate_std(trades: Sequence[BacktestTrade]) -> float:
    """按 UTC 自然周（周日为一周起点）统计胜率的总体标准差。

    少于 5 笔的周不计入；有效周少于 2 个时返回 0。
    """
    weeks: dict[Any, list[int]] = {}
    for t in trades:
        day = _utc(t.entry_time).date()
        week_start = day - timedelta(days=(day.weekday() + 1) % 7)
        bucket = weeks.setdefault(week_start, [0, 0])
        bucket[1] += 1
        if t.result == "WIN":
            bucket[0] += 1
    rates = [wins / total * 100 for wins, total in weeks.values() if total >= MIN_TRADES_PER_WEEK]
    if len(rates) < 2:
        return 0.0
    return pstdev(rates)


def kelly_fraction(win_rate: float, payout: float) -> float:
    """Kelly 仓位百分比：max(0, (p*b - q) / b) * 100。"""
    p = win_rate / 100
    b = payout / 100
    if p <= 0 or b <= 0:
        return 0.0
    return max(0.0, (p * b - (1 - p)) / b * 100)


def build_leaderboard_entry(
    result: BacktestResult,
    strategy: StrategyDefinition,
    config: LeaderboardConfig,
    created_at: int | None = None,
) -> LeaderboardEntry:
    """由一次回测结果构造排行榜条目（composite_score / rank 尚未赋值）。"""
    trades = result.trades
    stats = calculate_detailed_statistics(trades, config.initial_balance)

    days = _trading_days(trades)
    bet = config.effective_bet()
    total_volume = len(trades) * bet
    daily_volume = total_volume / days
    target = config.initial_balance * config.volume_multiplier
    days_to_target = math.ceil(target / daily_volume) if daily_volume > 0 else None

    std = weekly_win_rate_std(trades)
    score = calculate_score(
        ScoreInput(
            wins=stats.wins,
            losses=stats.losses,
            ties=stats.ties,
            payout_percent=config.payout,
            total_trades=stats.total_trades,
            max_drawdown_percent=stats.max_drawdown_percent,
            max_losing_streak=stats.max_consecutive_losses,
            profit_factor=stats.profit_factor,
            win_rate_std_dev=std,
        ),
        get_weights_by_profile(config.scoring_profile),
    )

    start = result.start_time or 0
    end = result.end_time or 0
    candle_count = round((end - start) / (config.expiry_seconds * 1000)) if trades else 0

    return LeaderboardEntry(
        strategy_id=strategy.id,
        strategy_name=strategy.name,
        params=dict(result.config.strategy_params),
        total_trades=stats.total_trades,
        wins=stats.wins,
        losses=stats.losses,
        ties=stats.ties,
        win_rate=stats.win_rate,
        net_profit=stats.net_profit,
        net_profit_percent=stats.net_profit_percent,
        profit_factor=stats.profit_factor,
        expectancy=stats.expectancy,
        max_drawdown=stats.max_drawdown,
        max_drawdown_percent=stats.max_drawdown_percent,
        max_consecutive_losses=stats.max_consecutive_losses,
        max_consecutive_wins=stats.max_consecutive_wins,
        recovery_factor=stats.recovery_factor,
        sharpe_ratio=stats.sharpe_ratio,
        sortino_ratio=stats.sortino_ratio,
        trading_days=days,
        trades_per_day=len(trades) / days,
        daily_volume=daily_volume,
        total_volume=total_volume,
        days_to_volume_target=days_to_target,
        win_rate_std_dev=std,
        kelly_fraction=kelly_fraction(stats.win_rate, config.payout),
        min_required_balance=stats.max_drawdown * BALANCE_DRAWDOWN_MULTIPLE,
        absolute_score=score.score,
        grade=score.grade,
        data_range=DataRange(start, end),
        candle_count=candle_count,
        bet_amount=bet,
        payout=config.payout,
        expiry_seconds=config.expiry_seconds,
        created_at=created_at if created_at is not None else _now_ms(),
    )


def _normalize(values: list[float]) -> list[float]:
    lo, hi = min(values), max(values)
    if hi == lo:
        return [50.0] * len(values)
    return [(v - lo) / (hi - lo) * 100 for v in values]


def _capped(value: float, cap: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(value, cap)


def score_and_rank_entries(
    entries: Iterable[LeaderboardEntry],
    weights: LeaderboardWeights | None = None,
) -> list[LeaderboardEntry]:
    """计算相对综合分并排名，返回新的条目列表（不修改输入）。

    Parameters
    ----------
    entries:
        同一次运行、已通过过滤的条目。
    weights:
        各指标权重，缺省为 LeaderboardWeights()。

    Returns
    -------
    list[LeaderboardEntry]
        按 (-composite_score, strategy_id) 排序，rank 为 1..n。
    """
    w = weights or LeaderboardWeights()
    items = sorted(entries, key=lambda e: e.strategy_id)
    if not items:
        return []

    win_rate = _normalize([e.win_rate for e in items])
    pf = _normalize([_capped(e.profit_factor, PF_CAP) for e in items])
    mdd = _normalize([e.max_drawdown_percent for e in items])
    streak = _normalize([float(e.max_consecutive_losses) for e in items])
    tpd = _normalize([e.trades_per_day for e in items])
    rf = _normalize([_capped(e.recovery_factor, RF_CAP) for e in items])

    scored = []
    for i, entry in enumerate(items):
        composite = (
            win_rate[i] * w.win_rate
            + pf[i] * w.profit_factor
            + (100 - mdd[i]) * w.max_drawdown
            + (100 - streak[i]) * w.max_consecutive_losses
            + tpd[i] * w.trades_per_day
            + rf[i] * w.recovery_factor
        )
        scored.append((composite, entry))

    scored.sort(key=lambda pair: (-pair[0], pair[1].strategy_id))
    return [entry.ranked(composite, rank) for rank, (composite, entry) in enumerate(scored, start=1)]


def run_leaderboard(
    candles: Sequence[Candle],
    config: LeaderboardConfig,
    registry: StrategyRegistry | None = None,
    engine: BacktestEngine | None = None,
    on_progress: ProgressCallback | None = None,
    clock: Callable[[], int] | None = None,
) -> LeaderboardResult:
    """用默认参数回测注册表中的每个策略并生成排行榜。

    单个策略回测失败只记日志并计入 filtered_out，不影响其他策略。
    """
    clock = clock or _now_ms
    registry = registry if registry is not None else default_registry()
    engine = engine if engine is not None else BacktestEngine(registry)
    started = time.perf_counter()
    definitions = list(registry)
    total = len(definitions)

    entries: list[LeaderboardEntry] = []
    filtered_out = 0
    for done, definition in enumerate(definitions):
        if on_progress:
            on_progress({"total": total, "completed": done, "current_strategy": definition.name, "status": "running"})
        try:
            bt_config = config.to_backtest_config(definition.id, definition.default_params())
            result = engine.run(bt_config, candles)
            entry = build_leaderboard_entry(result, definition, config, created_at=clock())
        except Exception as exc:
            logger.warning("strategy %s failed: %s", definition.id, exc)
            filtered_out += 1
            continue

        if entry.total_trades < config.min_trades:
            logger.debug("filter %s: %d trades < %d", definition.id, entry.total_trades, config.min_trades)
            filtered_out += 1
            continue
        if config.min_win_rate is not None and entry.win_rate < config.min_win_rate:
            logger.debug("filter %s: win rate %.2f < %.2f", definition.id, entry.win_rate, config.min_win_rate)
            filtered_out += 1
            continue
        entries.append(entry)

    ranked = score_and_rank_entries(entries, config.weights)
    if on_progress:
        on_progress({"total": total, "completed": total, "current_strategy": "", "status": "complete"})
    logger.info("leaderboard %s: %d ranked, %d filtered", config.symbol or "-", len(ranked), filtered_out)

    return LeaderboardResult(
        entries=ranked,
        config=config,
        executed_at=clock(),
        total_strategies=total,
        filtered_out=filtered_out,
        execution_time_ms=int((time.perf_counter() - started) * 1000),
    )


def _fmt_ratio(value: float) -> str:
    return "inf" if math.isinf(value) else f"{value:.2f}"


def format_leaderboard_report(result: LeaderboardResult) -> str:
    lines = [
        "=" * 64,
        f"STRATEGY LEADERBOARD  {result.symbol or '-'}".center(64),
        "=" * 64,
        f"Strategies: {result.total_strategies}  Ranked: {len(result.entries)}  "
        f"Filtered: {result.filtered_out}  Time: {result.execution_time_ms}ms",
        f"Bet: {result.config.bet_type} {result.config.bet_amount}  Payout: {result.config.payout}%  "
        f"Expiry: {result.config.expiry_seconds}s",
        "",
    ]
    for e in result.entries:
        sign = "+" if e.net_profit >= 0 else "-"
        grade = f" [{e.grade}]" if e.grade else ""
        days = "n/a" if e.days_to_volume_target is None else f"{e.days_to_volume_target}d"
        lines.extend(
            [
                f"#{e.rank} [{sign}] {e.strategy_name}{grade}",
                f"   Score: {e.composite_score:.1f}  Absolute: {e.absolute_score or 0:.1f}",
                f"   WR: {e.win_rate:.1f}% ({e.wins}W/{e.losses}L/{e.ties}T)  PF: {_fmt_ratio(e.profit_factor)}  "
                f"Net: ${e.net_profit:.2f}",
                f"   MDD: ${e.max_drawdown:.2f} ({e.max_drawdown_percent:.1f}%)  MaxLoss: {e.max_consecutive_losses}x",
                f"   Volume: ${e.daily_volume:.2f}/day ({e.trades_per_day:.1f} trades/day)  Target: {days}",
                f"   Kelly: {e.kelly_fraction:.1f}%  Min balance: ${e.min_required_balance:.2f}",
                f"   Stability: WR std {e.win_rate_std_dev:.2f}",
                "",
            ]
        )
    lines.append("=" * 64)
    return "\n".join(lines)


def save_leaderboard(result: LeaderboardResult, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(result.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return p


def load_leaderboard(path: str | Path) -> LeaderboardResult:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Leaderboard file not found: {p}")
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "entries" not in data:
        raise ValueError(f"not a leaderboard result: {p}")
    return LeaderboardResult.from_dict(data)
