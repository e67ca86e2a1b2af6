from __future__ import annotations

import math

import pytest

from engine.backtest_engine import BacktestTrade
from research.statistics import (
    DetailedStatistics,
    calculate_detailed_statistics,
    calculate_drawdown,
    format_statistics_report,
)


def _trade(i: int, result: str, direction: str = "CALL") -> BacktestTrade:
    profit = {"WIN": 9.2, "LOSS": -10.0, "TIE": 0.0}[result]
    return BacktestTrade(
        entry_time=i * 600_000,
        entry_price=100.0,
        exit_time=i * 600_000 + 60_000,
        exit_price=101.0,
        direction=direction,
        result=result,
        payout=92.0,
        profit=profit,
        bet_amount=10.0,
    )


@pytest.fixture
def mixed() -> list[BacktestTrade]:
    outcomes = ["WIN", "WIN", "LOSS", "TIE", "LOSS", "LOSS", "WIN"]
    return [_trade(i, r, "PUT" if i == 4 else "CALL") for i, r in enumerate(outcomes)]


def test_empty_trades_give_zeroed_stats():
    stats = calculate_detailed_statistics([], 1000)
    assert stats == DetailedStatistics()
    assert len(stats.hourly_stats) == 24
    assert stats.current_streak == ("none", 0)


def test_profit_breakdown(mixed):
    stats = calculate_detailed_statistics(mixed, 1000)
    assert (stats.wins, stats.losses, stats.ties) == (3, 3, 1)
    assert stats.gross_profit == pytest.approx(27.6)
    assert stats.gross_loss == pytest.approx(30.0)
    assert stats.net_profit == pytest.approx(-2.4)
    assert stats.profit_factor == pytest.approx(0.92)
    assert stats.average_win == pytest.approx(9.2)
    assert stats.largest_loss == pytest.approx(10.0)
    assert stats.win_rate == pytest.approx(3 / 7 * 100)


def test_streaks_skip_ties(mixed):
    stats = calculate_detailed_statistics(mixed, 1000)
    assert stats.max_consecutive_wins == 2
    assert stats.max_consecutive_losses == 3
    assert [(s.type, s.count) for s in stats.streaks] == [("win", 2), ("loss", 3), ("win", 1)]
    assert stats.streaks[1].start_index == 2
    assert stats.streaks[1].end_index == 5
    assert stats.current_streak == ("win", 1)


def test_drawdown_and_recovery(mixed):
    stats = calculate_detailed_statistics(mixed, 1000)
    assert stats.max_drawdown == pytest.approx(30.0)
    assert stats.max_drawdown_percent == pytest.approx(30.0 / 1018.4 * 100)
    assert stats.recovery_factor == pytest.approx(-2.4 / 30.0)
    assert calculate_drawdown([], 1000) == (0.0, 0.0)


def test_direction_and_time_stats(mixed):
    stats = calculate_detailed_statistics(mixed, 1000)
    assert stats.call_trades == 6
    assert stats.put_trades == 1
    assert stats.put_win_rate == 0.0
    assert stats.trading_duration_ms == 3_600_000
    assert stats.trades_per_hour == pytest.approx(7.0)
    assert stats.average_trade_gap_ms == pytest.approx(600_000)
    assert stats.busiest_hour == 0
    assert stats.hourly_stats[0].trades == 6
    assert stats.hourly_stats[1].trades == 1
    assert stats.quietest_hour == 2


def test_all_wins_have_infinite_ratios():
    stats = calculate_detailed_statistics([_trade(i, "WIN") for i in range(3)], 1000)
    assert math.isinf(stats.profit_factor)
    assert math.isinf(stats.recovery_factor)
    assert stats.max_drawdown == 0.0
    assert stats.calmar_ratio == 0.0
    # 收益完全相同，标准差为 0
    assert stats.sharpe_ratio == 0.0


def test_single_trade_has_no_duration():
    stats = calculate_detailed_statistics([_trade(0, "LOSS")], 1000)
    assert stats.trading_duration_ms == 0
    assert stats.trades_per_hour == 0.0
    assert stats.profit_factor == 0.0


def test_format_statistics_report(mixed):
    text = format_statistics_report(calculate_detailed_statistics(mixed, 1000))
    assert "BACKTEST REPORT" in text
    assert "Wins/Losses/Ties: 3/3/1" in text
    assert "Current Streak:   1 win" in text

    wins = format_statistics_report(calculate_detailed_statistics([_trade(0, "WIN")], 1000))
    assert "Profit Factor:    inf" in wins
