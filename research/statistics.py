"""回测逐笔交易的详细统计。"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from statistics import mean, pstdev
from typing import Sequence

from engine.backtest_engine import BacktestTrade
from shared.models.models import CALL, PUT

# 年化：约 250 个交易日 * 每天 24 笔
TRADES_PER_YEAR = 250 * 24


@dataclass(frozen=True)
class HourlyStats:
    hour: int
    trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    profit: float = 0.0
    avg_profit: float = 0.0


@dataclass(frozen=True)
class StreakInfo:
    type: str
    count: int
    start_index: int
    end_index: int
    profit: float


@dataclass(frozen=True)
class DetailedStatistics:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    ties: int = 0
    win_rate: float = 0.0
    loss_rate: float = 0.0

    gross_profit: float = 0.0
    gross_loss: float = 0.0
    net_profit: float = 0.0
    net_profit_percent: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0

    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    recovery_factor: float = 0.0

    call_trades: int = 0
    put_trades: int = 0
    call_win_rate: float = 0.0
    put_win_rate: float = 0.0
    call_profit: float = 0.0
    put_profit: float = 0.0

    trades_per_hour: float = 0.0
    average_trade_gap_ms: float = 0.0
    trading_duration_ms: int = 0
    busiest_hour: int = 0
    quietest_hour: int = 0
    hourly_stats: tuple[HourlyStats, ...] = field(
        default_factory=lambda: tuple(HourlyStats(h) for h in range(24))
    )

    current_streak: tuple[str, int] = ("none", 0)
    streaks: tuple[StreakInfo, ...] = ()

    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0


def _std(values: Sequence[float]) -> float:
    """总体标准差；少于 2 个样本时为 0。"""
    if len(values) < 2:
        return 0.0
    return pstdev(values)


def _downside_std(values: Sequence[float]) -> float:
    negatives = [v for v in values if v < 0]
    if len(negatives) < 2:
        return 0.0
    return pstdev(negatives)


def _hourly(trades: Sequence[BacktestTrade]) -> tuple[HourlyStats, ...]:
    buckets = [{"trades": 0, "wins": 0, "losses": 0, "profit": 0.0} for _ in range(24)]
    for t in trades:
        hour = datetime.fromtimestamp(t.entry_time / 1000, tz=timezone.utc).hour
        b = buckets[hour]
        b["trades"] += 1
        b["profit"] += t.profit
        if t.result == "WIN":
            b["wins"] += 1
        elif t.result == "LOSS":
            b["losses"] += 1
    return tuple(
        HourlyStats(
            hour=h,
            trades=b["trades"],
            wins=b["wins"],
            losses=b["losses"],
            win_rate=b["wins"] / b["trades"] * 100 if b["trades"] else 0.0,
            profit=b["profit"],
            avg_profit=b["profit"] / b["trades"] if b["trades"] else 0.0,
        )
        for h, b in enumerate(buckets)
    )


def _streaks(trades: Sequence[BacktestTrade]) -> list[StreakInfo]:
    """连胜/连败序列；平局跳过，不打断也不计入。"""
    out: list[StreakInfo] = []
    cur: dict | None = None
    for i, t in enumerate(trades):
        if t.result == "TIE":
            continue
        kind = "win" if t.result == "WIN" else "loss"
        if cur is not None and cur["type"] == kind:
            cur["count"] += 1
            cur["end_index"] = i
            cur["profit"] += t.profit
        else:
            if cur is not None:
                out.append(StreakInfo(**cur))
            cur = {"type": kind, "count": 1, "start_index": i, "end_index": i, "profit": t.profit}
    if cur is not None:
        out.append(StreakInfo(**cur))
    return out


def _current_streak(trades: Sequence[BacktestTrade]) -> tuple[str, int]:
    kind, count = "none", 0
    for t in reversed(trades):
        if t.result == "TIE":
            continue
        this = "win" if t.result == "WIN" else "loss"
        if kind == "none":
            kind, count = this, 1
        elif kind == this:
            count += 1
        else:
            break
    return kind, count


def calculate_drawdown(trades: Sequence[BacktestTrade], initial_balance: float) -> tuple[float, float]:
    """最大回撤（金额, 百分比）；百分比取金额最大那一刻相对当时峰值。"""
    balance = peak = initial_balance
    max_dd = max_dd_pct = 0.0
    for t in trades:
        balance += t.profit
        peak = max(peak, balance)
        dd = peak - balance
        if dd > max_dd:
            max_dd = dd
            max_dd_pct = dd / peak * 100 if peak > 0 else 0.0
    return max_dd, max_dd_pct


def calculate_detailed_statistics(
    trades: Sequence[BacktestTrade],
    initial_balance: float,
    risk_free_rate: float = 0.02,
) -> DetailedStatistics:
    """由逐笔交易计算完整统计。

    Parameters
    ----------
    trades:
        按时间顺序的交易。
    initial_balance:
        初始资金，用于收益率与回撤百分比。
    risk_free_rate:
        年化无风险利率，按 TRADES_PER_YEAR 摊到每笔。

    Returns
    -------
    DetailedStatistics
        无交易时所有字段为 0。
    """
    if not trades:
        return DetailedStatistics()

    wins = [t for t in trades if t.result == "WIN"]
    losses = [t for t in trades if t.result == "LOSS"]
    total = len(trades)

    gross_profit = sum(t.profit for t in wins)
    gross_loss = abs(sum(t.profit for t in losses))
    net = gross_profit - gross_loss
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = math.inf if gross_profit > 0 else 0.0

    calls = [t for t in trades if t.direction == CALL]
    puts = [t for t in trades if t.direction == PUT]
    call_wins = sum(1 for t in calls if t.result == "WIN")
    put_wins = sum(1 for t in puts if t.result == "WIN")

    duration = trades[-1].entry_time - trades[0].entry_time if total > 1 else 0
    hourly = _hourly(trades)
    busiest = max(hourly, key=lambda h: h.trades)
    quietest = min(hourly, key=lambda h: h.trades)

    streaks = _streaks(trades)
    win_streaks = [s.count for s in streaks if s.type == "win"]
    loss_streaks = [s.count for s in streaks if s.type == "loss"]

    max_dd, max_dd_pct = calculate_drawdown(trades, initial_balance)
    if max_dd > 0:
        recovery = net / max_dd
    else:
        recovery = math.inf if net > 0 else 0.0

    returns = [t.profit / initial_balance for t in trades]
    avg_ret = mean(returns)
    std = _std(returns)
    down_std = _downside_std(returns)
    excess = avg_ret - risk_free_rate / TRADES_PER_YEAR
    annualize = math.sqrt(TRADES_PER_YEAR)
    sharpe = excess / std * annualize if std else 0.0
    sortino = excess / down_std * annualize if down_std else 0.0
    calmar = (net / initial_balance * 100) / max_dd_pct if max_dd_pct else 0.0

    return DetailedStatistics(
        total_trades=total,
        wins=len(wins),
        losses=len(losses),
        ties=total - len(wins) - len(losses),
        win_rate=len(wins) / total * 100,
        loss_rate=len(losses) / total * 100,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        net_profit=net,
        net_profit_percent=net / initial_balance * 100,
        profit_factor=profit_factor,
        expectancy=net / total,
        average_win=gross_profit / len(wins) if wins else 0.0,
        average_loss=gross_loss / len(losses) if losses else 0.0,
        largest_win=max((t.profit for t in wins), default=0.0),
        largest_loss=max((abs(t.profit) for t in losses), default=0.0),
        max_drawdown=max_dd,
        max_drawdown_percent=max_dd_pct,
        max_consecutive_wins=max(win_streaks, default=0),
        max_consecutive_losses=max(loss_streaks, default=0),
        recovery_factor=recovery,
        call_trades=len(calls),
        put_trades=len(puts),
        call_win_rate=call_wins / len(calls) * 100 if calls else 0.0,
        put_win_rate=put_wins / len(puts) * 100 if puts else 0.0,
        call_profit=sum(t.profit for t in calls),
        put_profit=sum(t.profit for t in puts),
        trades_per_hour=total / (duration / 3_600_000) if duration > 0 else 0.0,
        average_trade_gap_ms=duration / (total - 1) if total > 1 else 0.0,
        trading_duration_ms=duration,
        busiest_hour=busiest.hour,
        quietest_hour=quietest.hour,
        hourly_stats=hourly,
        current_streak=_current_streak(trades),
        streaks=tuple(streaks),
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        calmar_ratio=calmar,
    )


def format_statistics_report(stats: DetailedStatistics) -> str:
    pf = "inf" if math.isinf(stats.profit_factor) else f"{stats.profit_factor:.2f}"
    streak_kind, streak_count = stats.current_streak
    lines = [
        "=" * 56,
        "BACKTEST REPORT".center(56),
        "=" * 56,
        "",
        "OVERVIEW",
        f"  Total Trades:     {stats.total_trades}",
        f"  Wins/Losses/Ties: {stats.wins}/{stats.losses}/{stats.ties}",
        f"  Win Rate:         {stats.win_rate:.2f}%",
        "",
        "PROFIT",
        f"  Net Profit:       ${stats.net_profit:.2f} ({stats.net_profit_percent:.2f}%)",
        f"  Gross P/L:        ${stats.gross_profit:.2f} / ${stats.gross_loss:.2f}",
        f"  Profit Factor:    {pf}",
        f"  Expectancy:       ${stats.expectancy:.4f}",
        f"  Avg Win/Loss:     ${stats.average_win:.2f} / ${stats.average_loss:.2f}",
        "",
        "RISK",
        f"  Max Drawdown:     ${stats.max_drawdown:.2f} ({stats.max_drawdown_percent:.2f}%)",
        f"  Max Win Streak:   {stats.max_consecutive_wins}",
        f"  Max Loss Streak:  {stats.max_consecutive_losses}",
        f"  Current Streak:   {streak_count} {streak_kind}",
        f"  Sharpe/Sortino:   {stats.sharpe_ratio:.2f} / {stats.sortino_ratio:.2f}",
        f"  Calmar:           {stats.calmar_ratio:.2f}",
        "",
        "DIRECTION",
        f"  CALL: {stats.call_trades} trades, {stats.call_win_rate:.1f}% win, ${stats.call_profit:.2f}",
        f"  PUT:  {stats.put_trades} trades, {stats.put_win_rate:.1f}% win, ${stats.put_profit:.2f}",
        "=" * 56,
    ]
    return "\n".join(lines)
