"""行情数据模块（market_data）。

该包聚合：
- Tick -> K 线聚合（含 payout 遥测过滤），见 `market_data/resampler.py`
- 历史数据读取（CSV/JSON），见 `market_data/loader.py`
"""

from market_data.loader import load_candles, load_ticks_from_csv
from market_data.resampler import is_payout_tick, normalize_symbol, resample_ticks

__all__ = [
    "is_payout_tick",
    "normalize_symbol",
    "resample_ticks",
    "load_candles",
    "load_ticks_from_csv",
]
