"""Tick -> 固定周期 K 线聚合。

说明
----
行情源里混有“赔率/payout”遥测：它与价格 Tick 走同一通道，但 OHLC 完全相同且数值落在
[0, 100]。真实成交价几乎不会同时满足这两个条件，因此按此规则识别并（默认）丢弃。

聚合规则：
- 丢弃 payout Tick 后按时间升序排序（同一时间戳再按价格排序，保证与输入顺序无关）；
- bucket = floor(ts / interval) * interval，只为非空 bucket 产出 K 线，空档不补；
- open/close 取 bucket 内最早/最晚 Tick，high/low 取极值，volume 为 Tick 数；
- K 线时间戳为 bucket 起点（毫秒），Tick 数少于阈值的 bucket 丢弃。
"""

from __future__ import annotations

import math
from typing import Iterable

from shared.config.schema import ResampleConfig
from shared.models.models import Candle, Tick
from utils.logging import setup_logger

_LOGGER = setup_logger("resampler")


def is_payout_tick(tick: Tick) -> bool:
    """判断 Tick 是否为 payout 遥测：OHLC 相同且值在 [0, 100]。"""
    value = tick.open
    if not (tick.high == value and tick.low == value and tick.close == value):
        return False
    return 0 <= value <= 100


def normalize_symbol(symbol: str) -> str:
    """统一品种写法：`#eurusd_otc` -> `EURUSD-OTC`。"""
    s = symbol.strip()
    if s.startswith("#"):
        s = s[1:]
    return s.replace("_", "-").upper()


def resample_ticks(
    ticks: Iterable[Tick],
    interval_seconds: int = 60,
    min_ticks_per_candle: int = 1,
    filter_payout: bool = True,
) -> list[Candle]:
    """把 Tick 聚合为按时间升序排列的 K 线。

    Parameters
    ----------
    ticks:
        任意顺序的 Tick（调用方负责按品种预过滤）。
    interval_seconds:
        K 线周期（秒）。
    min_ticks_per_candle:
        bucket 内最少 Tick 数，不足则丢弃该 bucket。
    filter_payout:
        是否丢弃 payout 遥测 Tick。

    Returns
    -------
    list[Candle]
        时间戳严格递增，且均为 interval_seconds*1000 的整数倍。
    """
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be > 0")

    items = list(ticks)
    kept = [t for t in items if not is_payout_tick(t)] if filter_payout else items
    dropped = len(items) - len(kept)
    if dropped:
        _LOGGER.debug("dropped %d payout ticks", dropped)

    ordered = sorted(kept, key=lambda t: (t.timestamp, t.close))

    buckets: dict[int, list[Tick]] = {}
    for tick in ordered:
        bucket = math.floor(tick.timestamp / interval_seconds) * interval_seconds
        buckets.setdefault(int(bucket), []).append(tick)

    candles: list[Candle] = []
    for bucket in sorted(buckets):
        group = buckets[bucket]
        if len(group) < min_ticks_per_candle:
            continue
        candles.append(
            Candle(
                timestamp=bucket * 1000,
                open=group[0].open,
                high=max(t.high for t in group),
                low=min(t.low for t in group),
                close=group[-1].close,
                volume=float(len(group)),
            )
        )
    return candles


def resample_with_config(ticks: Iterable[Tick], cfg: ResampleConfig | None = None) -> list[Candle]:
    cfg = cfg or ResampleConfig()
    return resample_ticks(
        ticks,
        interval_seconds=cfg.interval_seconds,
        min_ticks_per_candle=cfg.min_ticks_per_candle,
        filter_payout=cfg.filter_payout,
    )
