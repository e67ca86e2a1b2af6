"""SBB-120：布林带挤压后的突破。

前一根带宽处于过去 120 根带宽的低分位（挤压），当前收盘带余量突破上/下轨，
且实体占比足够、振幅相对近期放大时顺势出信号，建议到期时间 120 秒。
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Sequence

from algo.factors.ma import bollinger_series
from shared.models.models import CALL, PUT, Candle, StrategyResult


@dataclass(frozen=True)
class SBB120Config:
    bb_period: int = 20
    bb_std_dev: float = 2.0
    lookback_squeeze: int = 120
    squeeze_percentile: float = 10.0
    breakout_margin_ratio: float = 0.05
    min_body_ratio: float = 0.55
    vol_expansion_ratio: float = 1.2
    vol_lookback: int = 5
    expiry_override: int = 120

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "SBB120Config":
        if not data:
            return cls()
        ints = {"bb_period", "lookback_squeeze", "vol_lookback", "expiry_override"}
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = int(data[f.name]) if f.name in ints else float(data[f.name])
        return cls(**kwargs)


def sbb120(candles: Sequence[Candle], config: SBB120Config | Mapping[str, Any] | None = None) -> StrategyResult:
    cfg = config if isinstance(config, SBB120Config) else SBB120Config.from_mapping(config)
    if len(candles) < cfg.bb_period + cfg.lookback_squeeze:
        return StrategyResult.none("Insufficient data for SBB-120")

    closes = [c.close for c in candles]
    bands = bollinger_series(closes, cfg.bb_period, cfg.bb_std_dev)
    if len(bands) < cfg.lookback_squeeze + 1:
        return StrategyResult.none("Not enough BB data for squeeze lookback")

    widths = [(b.upper - b.lower) / b.middle if b.middle > 0 else 0.0 for b in bands]
    current = bands[-1]
    width_now = widths[-1]
    price = closes[-1]
    last = candles[-1]

    lookback = widths[-(cfg.lookback_squeeze + 1):-1]
    ordered = sorted(lookback)
    idx = max(0, int(len(ordered) * cfg.squeeze_percentile / 100) - 1)
    threshold = ordered[idx]

    prev_width = widths[-2]
    was_squeeze = prev_width <= threshold
    bw_min, bw_max = ordered[0], ordered[-1]
    bw_range = bw_max - bw_min
    extremeness = 1 - (prev_width - bw_min) / bw_range if bw_range > 0 else 0.0

    band_range = current.upper - current.lower
    margin = cfg.breakout_margin_ratio * band_range

    indicators: dict[str, float] = {
        "bandwidth": width_now,
        "bwPercentile": sum(1 for w in lookback if w < width_now) / len(lookback) * 100 if lookback else 50.0,
        "squeezeThreshold": threshold,
        "upper": current.upper,
        "lower": current.lower,
        "mid": current.middle,
        "price": price,
        "wasSqueeze": 1.0 if was_squeeze else 0.0,
        "expiryOverride": float(cfg.expiry_override),
    }
    if not was_squeeze:
        return StrategyResult.none("No squeeze detected", indicators)

    above = price > current.upper + margin
    below = price < current.lower - margin
    indicators["breakoutMargin"] = margin
    if not above and not below:
        indicators["breakoutDistance"] = max(price - current.upper, current.lower - price)
        return StrategyResult.none(f"Squeeze detected but no breakout (margin: {margin:.5f})", indicators)

    candle_range = last.high - last.low
    body_ratio = abs(last.close - last.open) / candle_range if candle_range > 0 else 0.0
    indicators["bodyRatio"] = body_ratio
    if body_ratio < cfg.min_body_ratio:
        return StrategyResult.none(f"Body ratio too small ({body_ratio:.2f} < {cfg.min_body_ratio})", indicators)

    recent = candles[-(cfg.vol_lookback + 1):-1]
    avg_range = sum(c.high - c.low for c in recent) / len(recent) if recent else 0.0
    indicators["currentRange"] = candle_range
    indicators["avgRange"] = avg_range
    indicators["volExpansionRatio"] = candle_range / avg_range if avg_range > 0 else 0.0
    if not candle_range > avg_range * cfg.vol_expansion_ratio:
        return StrategyResult.none("Volatility not expanding", indicators)

    direction = CALL if above else PUT
    distance = price - current.upper if above else current.lower - price
    indicators["breakoutDistance"] = distance

    confidence = 0.60
    confidence += extremeness * 0.10
    margin_excess = distance / margin if margin > 0 else 0.0
    confidence += min(margin_excess / 3, 1) * 0.10
    body_bonus = (body_ratio - cfg.min_body_ratio) / (1 - cfg.min_body_ratio) if cfg.min_body_ratio < 1 else 0.0
    confidence += min(body_bonus, 1) * 0.10
    confidence = min(confidence, 0.90)

    return StrategyResult(
        direction,
        confidence,
        f"SBB-120 {direction}: squeeze breakout (bw={width_now:.5f}, body={body_ratio:.2f})",
        indicators,
        expiry_override=cfg.expiry_override,
    )
