"""横盘行情下两个均值回归策略（RSI-BB 与 ZMR-60）的合并规则。

合并逻辑写成一张显式决策表：
键为 (模式, 主策略是否出信号, 次策略是否出信号, 方向是否一致)，值为动作名。
方向一致只在两者都出信号时才可能为 True。
"""

from __future__ import annotations

from itertools import product
from typing import Literal

from shared.models.models import StrategyResult

MergeMode = Literal["consensus", "best", "off"]
MergeAction = Literal["none", "primary", "secondary", "higher", "consensus"]

MERGE_MODES: tuple[str, ...] = ("consensus", "best", "off")
CONSENSUS_ID = "RSI-BB+ZMR-60"


def _action(mode: str, primary: bool, secondary: bool, agree: bool) -> MergeAction:
    if mode == "off":
        return "primary" if primary else "none"
    if mode == "consensus":
        return "consensus" if (primary and secondary and agree) else "none"
    if primary and secondary:
        return "higher"
    if primary:
        return "primary"
    if secondary:
        return "secondary"
    return "none"


MERGE_TABLE: dict[tuple[str, bool, bool, bool], MergeAction] = {
    (mode, p, s, agree): _action(mode, p, s, agree)
    for mode, p, s, agree in product(MERGE_MODES, (True, False), (True, False), (True, False))
    if not agree or (p and s)
}


def _consensus(primary: StrategyResult, secondary: StrategyResult) -> StrategyResult:
    chosen = primary if primary.confidence >= secondary.confidence else secondary
    indicators = {
        **primary.indicators,
        **secondary.indicators,
        "zmr60_z": secondary.indicators.get("z", 0.0),
        "rsiBB_confidence": primary.confidence,
        "zmr60_confidence": secondary.confidence,
    }
    return StrategyResult(
        signal=chosen.signal,
        confidence=chosen.confidence,
        reason=f"[consensus] {chosen.reason}",
        indicators=indicators,
        strategy_id=CONSENSUS_ID,
        expiry_override=chosen.expiry_override,
    )


def merge_mean_reversion(
    mode: MergeMode,
    primary: StrategyResult | None,
    secondary: StrategyResult | None,
) -> StrategyResult | None:
    """按决策表合并主/次策略结果。

    Parameters
    ----------
    mode:
        consensus / best / off。
    primary, secondary:
        已带 strategy_id 的策略结果；None 或无方向视为未出信号。

    Returns
    -------
    StrategyResult | None
        合并后的结果；无信号返回 None。

    Raises
    ------
    ValueError
        未知的合并模式。
    """
    if mode not in MERGE_MODES:
        raise ValueError(f"Unknown merge mode: {mode}")
    p_fired = primary is not None and primary.fired
    s_fired = secondary is not None and secondary.fired
    agree = p_fired and s_fired and primary.signal == secondary.signal
    action = MERGE_TABLE[(mode, p_fired, s_fired, agree)]

    if action == "primary":
        return primary
    if action == "secondary":
        return secondary
    if action == "higher":
        return primary if primary.confidence >= secondary.confidence else secondary
    if action == "consensus":
        return _consensus(primary, secondary)
    return None
