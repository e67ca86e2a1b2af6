"""实时信号生成器（每个品种一个 K 线缓冲 + 选择/合并/过滤管线）。

每根新 K 线（缓冲达到 min_candles 后）执行一次：
1. 计算 regime；
2. 选策略：已加载品种配置时按配置顺序尝试注册表中的策略，否则按 regime 路由到内置策略；
3. 趋势过滤（可关）；
4. 置信度过滤；
5. 生成 Signal，写入有上限的日志并同步通知监听者。

信号结果由外部通过 `update_signal_result` 回填，每个信号只能回填一次。
生成器实例独占自己的缓冲、日志和计数器；需要时用 `create_signal_generator` 新建。
"""

from __future__ import annotations

import math
import random
import string
import time
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from algo.regime import detect_regime, is_trending
from algo.strategy.high_winrate import rsi_bb_bounce
from algo.strategy.mean_reversion import zmr60_with_high_winrate
from algo.strategy.registry import StrategyRegistry, default_registry
from algo.strategy.squeeze import sbb120
from algo.strategy.trend import select_trend_strategy
from engine.merge import merge_mean_reversion
from shared.config.schema import SignalGeneratorConfig
from shared.models.models import (
    CALL,
    PUT,
    SIGNAL_OUTCOMES,
    STRONG_DOWNTREND,
    STRONG_UPTREND,
    UNKNOWN,
    WEAK_DOWNTREND,
    WEAK_UPTREND,
    Candle,
    RegimeInfo,
    Signal,
    StrategyResult,
)
from utils.logging import setup_logger
from utils.strategy_config import StrategyConfigDocument, parse_strategy_config

logger = setup_logger("signal-generator")

SignalListener = Callable[[Signal], None]

# 弱趋势下 ADX 达到该值时拒绝逆势方向
COUNTER_TREND_ADX = 30.0

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix() -> str:
    return "".join(random.choices(_ID_ALPHABET, k=6))


def _empty_strategy_stats() -> dict[str, int]:
    return {"count": 0, "wins": 0, "losses": 0, "ties": 0}


def _normalize_plugin_result(result: object) -> StrategyResult | None:
    """把外部策略结果整理成干净的 StrategyResult；格式不合法时返回 None（视为无观点）。"""
    if not isinstance(result, StrategyResult) or result.signal not in (CALL, PUT):
        return None
    if isinstance(result.confidence, bool) or not isinstance(result.confidence, (int, float)):
        return None
    if not math.isfinite(result.confidence):
        return None
    if not isinstance(result.indicators, Mapping):
        return None
    if result.expiry_override is not None and (
        not isinstance(result.expiry_override, int) or result.expiry_override <= 0
    ):
        return None
    return replace(
        result,
        confidence=float(result.confidence),
        reason=result.reason if isinstance(result.reason, str) else "",
        indicators=dict(result.indicators),
    )


def passes_trend_filter(direction: str, regime: RegimeInfo) -> bool:
    """强趋势只放行顺势方向；弱趋势且 ADX>=30 时拒绝逆势方向；其余放行。"""
    if regime.regime == STRONG_UPTREND:
        return direction == CALL
    if regime.regime == STRONG_DOWNTREND:
        return direction == PUT
    if regime.adx >= COUNTER_TREND_ADX:
        if regime.regime == WEAK_UPTREND and direction == PUT:
            return False
        if regime.regime == WEAK_DOWNTREND and direction == CALL:
            return False
    return True


class SignalGenerator:
    def __init__(
        self,
        config: SignalGeneratorConfig | None = None,
        registry: StrategyRegistry | None = None,
        strategy_config: StrategyConfigDocument | dict | None = None,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.config = config or SignalGeneratorConfig()
        self.registry = registry if registry is not None else default_registry()
        self._strategy_config = parse_strategy_config(strategy_config) if strategy_config is not None else None
        self._clock = clock or _now_ms
        self._id_factory = id_factory or _random_suffix

        self._buffers: dict[str, deque[Candle]] = {}
        self._signals: deque[Signal] = deque(maxlen=self.config.max_signal_log)
        self._listeners: list[SignalListener] = []
        self._generated = 0
        self._filtered = 0
        self._by_strategy: dict[str, dict[str, int]] = {}

    # ------------------------------------------------------------------
    # 缓冲
    # ------------------------------------------------------------------
    def _new_buffer(self, candles: Iterable[Candle] = ()) -> deque[Candle]:
        return deque(candles, maxlen=self.config.max_candle_buffer)

    def add_candle(self, symbol: str, candle: Candle) -> Signal | None:
        """追加一根 K 线；缓冲不足 min_candles 时返回 None，否则执行一次评估。"""
        buf = self._buffers.setdefault(symbol, self._new_buffer())
        buf.append(candle)
        if len(buf) < self.config.min_candles:
            return None
        return self._check_signals(symbol, list(buf))

    def set_history(self, symbol: str, candles: Sequence[Candle]) -> None:
        """整体替换缓冲（保留最后 max_candle_buffer 根）。"""
        self._buffers[symbol] = self._new_buffer(list(candles)[-self.config.max_candle_buffer:])

    def get_candles(self, symbol: str) -> list[Candle]:
        return list(self._buffers.get(symbol, ()))

    def evaluate(self, symbol: str) -> Signal | None:
        """对当前缓冲执行一次评估，不追加 K 线。"""
        candles = self.get_candles(symbol)
        if len(candles) < self.config.min_candles:
            return None
        return self._check_signals(symbol, candles)

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------
    def get_regime(self, symbol: str) -> RegimeInfo | None:
        candles = self.get_candles(symbol)
        if len(candles) < self.config.min_candles:
            return None
        return detect_regime(candles)

    def get_signals(self, limit: int = 10) -> list[Signal]:
        if limit <= 0:
            return []
        return list(self._signals)[-limit:]

    def get_stats(self) -> dict[str, Any]:
        return {
            "signals_generated": self._generated,
            "signals_filtered": self._filtered,
            "by_strategy": {k: dict(v) for k, v in self._by_strategy.items()},
        }

    @property
    def strategy_config(self) -> StrategyConfigDocument | None:
        return self._strategy_config

    # ------------------------------------------------------------------
    # 订阅 / 配置 / 回填
    # ------------------------------------------------------------------
    def on_signal(self, callback: SignalListener) -> Callable[[], None]:
        """注册同步监听者，返回取消订阅函数（重复调用无副作用）。"""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def load_strategy_config(self, doc: StrategyConfigDocument | dict) -> None:
        self._strategy_config = parse_strategy_config(doc)
        logger.info("strategy config loaded: symbols=%s", sorted(self._strategy_config.symbols))

    def update_signal_result(self, signal_id: str, outcome: str) -> bool:
        """回填信号结果。

        Returns
        -------
        bool
            True 表示状态已从 pending 变更；未知 id 或已回填过的信号返回 False。

        Raises
        ------
        ValueError
            outcome 不是 win / loss / tie。
        """
        if outcome not in SIGNAL_OUTCOMES:
            raise ValueError(f"Invalid signal outcome: {outcome}")
        signal = next((s for s in self._signals if s.id == signal_id), None)
        if signal is None:
            return False
        if not signal.is_pending:
            logger.warning(
                "signal %s already resolved as %s; ignoring %s", signal_id, signal.status, outcome
            )
            return False
        signal.status = outcome
        stats = self._by_strategy.setdefault(signal.strategy_id or UNKNOWN.upper(), _empty_strategy_stats())
        key = {"win": "wins", "loss": "losses", "tie": "ties"}[outcome]
        stats[key] += 1
        return True

    # ------------------------------------------------------------------
    # 管线
    # ------------------------------------------------------------------
    def _check_signals(self, symbol: str, candles: list[Candle]) -> Signal | None:
        regime = detect_regime(candles)
        result = self._select_strategy(symbol, candles, regime)
        if result is None or not result.fired:
            return None

        if self.config.use_trend_filter and not passes_trend_filter(result.signal, regime):
            self._filtered += 1
            logger.debug("trend filter rejected %s %s in %s", symbol, result.signal, regime.regime)
            return None

        if result.confidence < self.config.min_confidence:
            self._filtered += 1
            return None

        signal = self._create_signal(symbol, result, regime, candles)
        self._signals.append(signal)
        self._generated += 1
        self._by_strategy.setdefault(signal.strategy_id, _empty_strategy_stats())["count"] += 1

        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception:
                logger.exception("signal listener failed for %s", signal.id)
        return signal

    def _select_strategy(self, symbol: str, candles: list[Candle], regime: RegimeInfo) -> StrategyResult | None:
        configured = self._select_from_config(symbol, candles)
        if configured is not None:
            return configured
        return self._select_default(candles, regime)

    def _select_from_config(self, symbol: str, candles: list[Candle]) -> StrategyResult | None:
        if self._strategy_config is None:
            return None
        sym_cfg = self._strategy_config.symbols.get(symbol)
        if sym_cfg is None:
            return None
        for strategy_id in sym_cfg.strategies:
            definition = self.registry.get(strategy_id)
            if definition is None:
                logger.debug("strategy %s not in registry, skipped", strategy_id)
                continue
            try:
                result = definition(candles, sym_cfg.params.get(strategy_id))
            except Exception as exc:
                logger.warning("strategy %s failed on %s: %s", strategy_id, symbol, exc)
                continue
            clean = _normalize_plugin_result(result)
            if clean is None:
                logger.debug("strategy %s returned a malformed result, skipped", strategy_id)
                continue
            return replace(clean, strategy_id=strategy_id, reason=clean.reason or f"[config] {definition.name}")
        return None

    def _select_default(self, candles: list[Candle], regime: RegimeInfo) -> StrategyResult | None:
        if regime.regime == UNKNOWN:
            return None
        hw = self.config.high_winrate
        if is_trending(regime):
            return select_trend_strategy(candles, regime, hw)

        squeeze = sbb120(candles)
        if squeeze.fired:
            return squeeze.with_id("SBB-120")

        mode = self.config.zmr60_merge_mode
        primary = rsi_bb_bounce(candles, hw).with_id("RSI-BB")
        secondary = None if mode == "off" else zmr60_with_high_winrate(candles, hw).with_id("ZMR-60")
        return merge_mean_reversion(mode, primary, secondary)

    def _create_signal(
        self, symbol: str, result: StrategyResult, regime: RegimeInfo, candles: list[Candle]
    ) -> Signal:
        now = self._clock()
        indicators: dict[str, float] = {"adx": regime.adx, "trendDirection": float(regime.direction)}
        indicators.update(result.indicators)
        return Signal(
            id=f"{symbol}-{now}-{self._id_factory()}",
            timestamp=now,
            symbol=symbol,
            direction=result.signal,
            strategy_id=result.strategy_id or UNKNOWN.upper(),
            strategy=result.reason,
            regime=regime.regime,
            confidence=min(max(float(result.confidence), 0.0), 1.0),
            expiry=result.expiry_override or self.config.expiry_seconds,
            entry_price=candles[-1].close,
            indicators=indicators,
        )


def create_signal_generator(config: SignalGeneratorConfig | None = None, **kwargs: Any) -> SignalGenerator:
    """新建一个独立的生成器实例。"""
    return SignalGenerator(config, **kwargs)


# ----------------------------------------------------------------------
# 信号报告
# ----------------------------------------------------------------------

def _tally(signals: Iterable[Signal], key: Callable[[Signal], str]) -> dict[str, dict[str, int]]:
    out: dict[str, dict[str, int]] = {}
    for s in signals:
        bucket = out.setdefault(key(s), _empty_strategy_stats())
        bucket["count"] += 1
        if s.status == "win":
            bucket["wins"] += 1
        elif s.status == "loss":
            bucket["losses"] += 1
        elif s.status == "tie":
            bucket["ties"] += 1
    return out


def _rate_text(wins: int, losses: int) -> str:
    decided = wins + losses
    return f"{wins / decided * 100:.1f}%" if decided else "N/A"


def _recommendations(
    win_rate: float | None,
    by_strategy: dict[str, dict[str, int]],
    by_regime: dict[str, dict[str, int]],
) -> list[str]:
    lines: list[str] = []
    if win_rate is not None:
        if win_rate >= 55:
            lines.append(f"Win rate {win_rate:.1f}% is above target (52.1%). Continue current strategy.")
        elif win_rate >= 50:
            lines.append(f"Win rate {win_rate:.1f}% is marginal. Consider tightening filters.")
        else:
            lines.append(f"Win rate {win_rate:.1f}% is below breakeven. Review strategy selection.")

    best_name, best_rate = None, 0.0
    for name, st in by_strategy.items():
        decided = st["wins"] + st["losses"]
        if decided >= 3:
            rate = st["wins"] / decided
            if rate > best_rate:
                best_name, best_rate = name, rate
    if best_name is not None:
        lines.append(f"Best performing strategy: {best_name} ({best_rate * 100:.1f}%)")

    ranging = by_regime.get("ranging")
    if ranging and ranging["wins"] + ranging["losses"] > 0:
        rate = ranging["wins"] / (ranging["wins"] + ranging["losses"])
        if rate > 0.55:
            lines.append(f"Ranging market signals performing well ({rate * 100:.1f}%)")
    return lines


def build_signal_report(signals: Sequence[Signal]) -> dict[str, Any]:
    """汇总信号表现：胜率 = wins / (wins + losses)，平局不计入分母。"""
    if not signals:
        return {
            "summary": "No signals generated yet",
            "recommendation": "Wait for market conditions to generate signals",
        }

    wins = sum(1 for s in signals if s.status == "win")
    losses = sum(1 for s in signals if s.status == "loss")
    ties = sum(1 for s in signals if s.status == "tie")
    pending = sum(1 for s in signals if s.status == "pending")
    decided = wins + losses
    win_rate = wins / decided * 100 if decided else None

    by_strategy = _tally(signals, lambda s: s.strategy_id or UNKNOWN.upper())
    by_regime = _tally(signals, lambda s: s.regime)

    def _rows(groups: dict[str, dict[str, int]]) -> list[dict[str, Any]]:
        return [
            {"name": name, "signals": st["count"], "win_rate": _rate_text(st["wins"], st["losses"])}
            for name, st in groups.items()
        ]

    recent = [
        {
            "direction": s.direction,
            "strategy": s.strategy,
            "strategy_id": s.strategy_id,
            "regime": s.regime,
            "confidence": f"{s.confidence * 100:.0f}%",
            "status": s.status,
            "time": datetime.fromtimestamp(s.timestamp / 1000, tz=timezone.utc).strftime("%H:%M:%S"),
        }
        for s in signals[-5:]
    ]

    return {
        "summary": {
            "total_signals": len(signals),
            "completed": decided,
            "pending": pending,
            "win_rate": _rate_text(wins, losses),
            "wins": wins,
            "losses": losses,
            "ties": ties,
        },
        "performance": {"by_strategy": _rows(by_strategy), "by_regime": _rows(by_regime)},
        "recent_signals": recent,
        "recommendation": "\n".join(_recommendations(win_rate, by_strategy, by_regime)),
    }
