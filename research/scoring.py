"""策略绝对评分（0-100）与 A-F 等级。

与排行榜的相对综合分不同，这里只看策略自身指标与固定阈值，不依赖同批其他策略。
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from shared.config.schema import ScoreWeights, ScoringProfile

DEFAULT_SCORE_WEIGHTS = ScoreWeights()
STABILITY_WEIGHTS = ScoreWeights(
    win_rate=0.20,
    expected_value=0.15,
    max_drawdown=0.25,
    max_losing_streak=0.15,
    profit_factor=0.10,
    trade_count=0.05,
    consistency=0.10,
)
GROWTH_WEIGHTS = ScoreWeights(
    win_rate=0.25,
    expected_value=0.25,
    max_drawdown=0.10,
    max_losing_streak=0.05,
    profit_factor=0.15,
    trade_count=0.15,
    consistency=0.05,
)

BREAK_EVEN_WIN_RATE = 52.1
MIN_TRADES_FOR_SIGNIFICANCE = 30
EXCELLENT_TRADE_COUNT = 200
MAX_ACCEPTABLE_DRAWDOWN = 30.0
MAX_ACCEPTABLE_LOSING_STREAK = 10
EXCELLENT_PROFIT_FACTOR = 3.0


def get_weights_by_profile(profile: ScoringProfile | str) -> ScoreWeights:
    if profile == "stability":
        return STABILITY_WEIGHTS
    if profile == "growth":
        return GROWTH_WEIGHTS
    return DEFAULT_SCORE_WEIGHTS


@dataclass(frozen=True)
class ScoreInput:
    wins: int
    losses: int
    ties: int
    payout_percent: float
    total_trades: int
    max_drawdown_percent: float
    max_losing_streak: int
    profit_factor: float
    win_rate_std_dev: float = 0.0


@dataclass(frozen=True)
class ScoreBreakdown:
    win_rate: float
    expected_value: float
    max_drawdown: float
    max_losing_streak: float
    profit_factor: float
    trade_count: float
    consistency: float


@dataclass(frozen=True)
class ScoreResult:
    score: float
    breakdown: ScoreBreakdown
    expected_value: float
    grade: str
    summary: str


def _linear(value: float, in_min: float, in_max: float, out_min: float, out_max: float) -> float:
    if in_max == in_min:
        return out_min
    return out_min + (value - in_min) / (in_max - in_min) * (out_max - out_min)


def score_win_rate(win_rate: float, payout_percent: float) -> float:
    """盈亏平衡胜率处得 50 分；低于它 5 个点以上为 0；每高 1 个点加 5 分，封顶 100。"""
    break_even = 100 / (100 + payout_percent) * 100
    if win_rate <= break_even - 5:
        return 0.0
    if win_rate <= break_even:
        return (win_rate - (break_even - 5)) / 5 * 50
    return min(50 + (win_rate - break_even) * 5, 100.0)


def score_expected_value(ev: float) -> float:
    if ev <= -0.05:
        return 0.0
    if ev <= 0:
        return _linear(ev, -0.05, 0, 0, 20)
    if ev <= 0.02:
        return _linear(ev, 0, 0.02, 20, 50)
    if ev <= 0.10:
        return _linear(ev, 0.02, 0.10, 50, 100)
    return 100.0


def score_max_drawdown(mdd_percent: float) -> float:
    if mdd_percent <= 0:
        return 100.0
    if mdd_percent >= MAX_ACCEPTABLE_DRAWDOWN:
        return 0.0
    return _linear(mdd_percent, 0, MAX_ACCEPTABLE_DRAWDOWN, 100, 0)


def score_losing_streak(streak: int) -> float:
    if streak <= 0:
        return 100.0
    if streak >= MAX_ACCEPTABLE_LOSING_STREAK:
        return 0.0
    return _linear(streak, 0, MAX_ACCEPTABLE_LOSING_STREAK, 100, 0)


def score_profit_factor(pf: float) -> float:
    if not math.isfinite(pf):
        pf = EXCELLENT_PROFIT_FACTOR
    if pf <= 0:
        return 0.0
    if pf < 1.0:
        return _linear(pf, 0, 1.0, 0, 30)
    if pf < 1.5:
        return _linear(pf, 1.0, 1.5, 30, 60)
    if pf < EXCELLENT_PROFIT_FACTOR:
        return _linear(pf, 1.5, EXCELLENT_PROFIT_FACTOR, 60, 100)
    return 100.0


def score_trade_count(count: int) -> float:
    if count <= 0:
        return 0.0
    if count < MIN_TRADES_FOR_SIGNIFICANCE:
        return _linear(count, 0, MIN_TRADES_FOR_SIGNIFICANCE, 0, 30)
    if count < EXCELLENT_TRADE_COUNT:
        return _linear(count, MIN_TRADES_FOR_SIGNIFICANCE, EXCELLENT_TRADE_COUNT, 30, 100)
    return 100.0


def score_consistency(win_rate_std: float) -> float:
    if win_rate_std <= 0:
        return 100.0
    if win_rate_std >= 15:
        return 0.0
    return _linear(win_rate_std, 0, 15, 100, 0)


def to_grade(score: float) -> str:
    if score >= 80:
        return "A"
    if score >= 60:
        return "B"
    if score >= 40:
        return "C"
    if score >= 20:
        return "D"
    return "F"


def calculate_score(data: ScoreInput, weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS) -> ScoreResult:
    """计算绝对评分。

    胜率只按已决出胜负的交易计算（平局不计）；EV = p*b - q，无已决交易时为 0。
    """
    decided = data.wins + data.losses
    win_rate = data.wins / decided * 100 if decided else 0.0
    p = win_rate / 100
    b = data.payout_percent / 100
    ev = p * b - (1 - p) if decided else 0.0

    breakdown = ScoreBreakdown(
        win_rate=score_win_rate(win_rate, data.payout_percent),
        expected_value=score_expected_value(ev),
        max_drawdown=score_max_drawdown(data.max_drawdown_percent),
        max_losing_streak=score_losing_streak(data.max_losing_streak),
        profit_factor=score_profit_factor(data.profit_factor),
        trade_count=score_trade_count(data.total_trades),
        consistency=score_consistency(data.win_rate_std_dev),
    )
    raw = (
        breakdown.win_rate * weights.win_rate
        + breakdown.expected_value * weights.expected_value
        + breakdown.max_drawdown * weights.max_drawdown
        + breakdown.max_losing_streak * weights.max_losing_streak
        + breakdown.profit_factor * weights.profit_factor
        + breakdown.trade_count * weights.trade_count
        + breakdown.consistency * weights.consistency
    )
    score = max(0.0, min(100.0, raw))
    grade = to_grade(score)
    summary = " | ".join(
        [
            f"Grade {grade} ({score:.1f}/100)",
            f"WR: {win_rate:.1f}%",
            f"EV: {ev * 100:.2f}%/trade",
            f"PF: {data.profit_factor:.2f}",
            f"MDD: {data.max_drawdown_percent:.1f}%",
            f"MaxLoss: {data.max_losing_streak}x",
            f"Trades: {data.total_trades}",
        ]
    )
    return ScoreResult(score=score, breakdown=breakdown, expected_value=ev, grade=grade, summary=summary)
