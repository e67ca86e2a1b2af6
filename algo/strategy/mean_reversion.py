"""ZMR-60：对数收益 Z-score 均值回归。

最后一根的对数收益相对前 60 根收益分布偏离超过阈值时视为候选，
再用 RSI / 布林带位置 / 影线比例三项确认，至少满足 confirm_min 项才出信号。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Any, Mapping, Sequence

from algo.factors.ma import bollinger
from algo.factors.rsi import rsi_series
from algo.strategy.high_winrate import HighWinRateInput, as_high_winrate, bb_position
from shared.models.models import CALL, PUT, Candle, StrategyResult


@dataclass(frozen=True)
class ZMR60Config:
    lookback_returns: int = 60
    z_threshold: float = 2.5
    rsi_period: int = 7
    rsi_oversold: float = 25.0
    rsi_overbought: float = 75.0
    bb_period: int = 20
    bb_std_dev: float = 2.0
    bb_call_threshold: float = 0.10
    bb_put_threshold: float = 0.90
    wick_threshold: float = 0.45
    confirm_min: int = 2
    min_candles: int = 80

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ZMR60Config":
        if not data:
            return cls()
        ints = {"lookback_returns", "rsi_period", "bb_period", "confirm_min", "min_candles"}
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = int(data[f.name]) if f.name in ints else float(data[f.name])
        return cls(**kwargs)


def zmr60(candles: Sequence[Candle], config: ZMR60Config | Mapping[str, Any] | None = None) -> StrategyResult:
    cfg = config if isinstance(config, ZMR60Config) else ZMR60Config.from_mapping(config)
    if len(candles) < cfg.min_candles:
        return StrategyResult.none("Insufficient data for ZMR-60")

    closes = [c.close for c in candles]
    log_returns = [
        math.log(closes[i] / closes[i - 1])
        for i in range(1, len(closes))
        if closes[i - 1] > 0 and closes[i] > 0
    ]
    if len(log_returns) < cfg.lookback_returns + 1:
        return StrategyResult.none("Insufficient returns for Z-score")

    window = log_returns[-(cfg.lookback_returns + 1):-1]
    mu = sum(window) / len(window)
    sigma = math.sqrt(sum((r - mu) ** 2 for r in window) / len(window))
    if sigma == 0:
        return StrategyResult.none("Zero volatility, no signal")

    r_last = log_returns[-1]
    z = (r_last - mu) / sigma
    is_call = z <= -cfg.z_threshold
    is_put = z >= cfg.z_threshold
    if not is_call and not is_put:
        return StrategyResult.none(
            f"ZMR-60: z={z:.2f}, no trigger (threshold=±{cfg.z_threshold})",
            {"z": z, "sigma": sigma, "rLast": r_last, "mu": mu},
        )

    rsis = rsi_series(closes, cfg.rsi_period)
    cur_rsi = rsis[-1] if rsis else 50.0
    prev_rsi = rsis[-2] if len(rsis) > 1 else 50.0
    if is_call:
        rsi_ok = cur_rsi < cfg.rsi_oversold or (prev_rsi < cfg.rsi_oversold <= cur_rsi)
    else:
        rsi_ok = cur_rsi > cfg.rsi_overbought or (prev_rsi > cfg.rsi_overbought >= cur_rsi)

    bands = bollinger(closes, cfg.bb_period, cfg.bb_std_dev)
    pos = bb_position(closes[-1], bands.upper, bands.lower) if bands else 0.5
    bb_ok = pos < cfg.bb_call_threshold if is_call else pos > cfg.bb_put_threshold

    last = candles[-1]
    rng = last.high - last.low
    wick_ratio = 0.0
    if rng > 0:
        if is_call:
            wick_ratio = (min(last.open, last.close) - last.low) / rng
        else:
            wick_ratio = (last.high - max(last.open, last.close)) / rng
    wick_ok = wick_ratio >= cfg.wick_threshold

    confirms = int(rsi_ok) + int(bb_ok) + int(wick_ok)
    indicators = {
        "z": z,
        "sigma": sigma,
        "rLast": r_last,
        "mu": mu,
        "rsi": cur_rsi,
        "bbPosition": pos,
        "wickRatio": wick_ratio,
        "confirmCount": float(confirms),
    }
    if confirms < cfg.confirm_min:
        flags = "RSI:{} BB:{} wick:{}".format(*("Y" if ok else "N" for ok in (rsi_ok, bb_ok, wick_ok)))
        return StrategyResult.none(f"ZMR-60: z={z:.2f}, confirms={confirms}/{cfg.confirm_min} ({flags})", indicators)

    confidence = 0.60 + min((abs(z) - cfg.z_threshold) * 0.5, 0.20)
    if confirms == 2:
        confidence += 0.05
    elif confirms == 3:
        confidence += 0.10
    confidence = min(confidence, 0.90)

    direction = CALL if is_call else PUT
    return StrategyResult(
        direction,
        confidence,
        f"ZMR-60: z={z:.1f}, RSI={cur_rsi:.1f}, BBpos={pos:.2f}, wick={wick_ratio:.2f}",
        indicators,
    )


def zmr60_with_high_winrate(candles: Sequence[Candle], hw: HighWinRateInput = None) -> StrategyResult:
    """ZMR-60 使用生成器共享的 RSI 设置。"""
    c = as_high_winrate(hw)
    return zmr60(
        candles,
        ZMR60Config(rsi_period=c.rsi_period, rsi_oversold=c.rsi_oversold, rsi_overbought=c.rsi_overbought),
    )
