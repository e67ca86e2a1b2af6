"""历史数据加载。

从 CSV/JSON 读取 Tick 与 Candle，供回测、排行榜与命令行使用。
时间字段支持秒/毫秒时间戳或 ISO 字符串。
"""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

import pandas as pd

from shared.models.models import Candle, Tick


def _parse_ts_seconds(val: str) -> float:
    """解析为秒级时间戳（float）。"""
    text = str(val).strip()
    try:
        num = float(text)
    except ValueError:
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Invalid datetime value: {val}") from exc
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    # 大于 1e12 视为毫秒
    return num / 1000.0 if num > 1e12 else num


def load_ticks_from_csv(path: str | Path) -> Iterator[Tick]:
    """
    从 CSV 文件读取 Tick。

    列名：symbol,timestamp,open,high,low,close[,volume,source]；
    若只有 price 列，则视为 OHLC 同值。
    """
    with Path(path).open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for row in reader:
            ts = _parse_ts_seconds(row.get("timestamp") or row.get("ts") or "")
            if "price" in row and row.get("price") not in (None, ""):
                price = float(row["price"])
                o = h = l = c = price
            else:
                o, h, l, c = (float(row[k]) for k in ("open", "high", "low", "close"))
            yield Tick(
                symbol=row.get("symbol", ""),
                timestamp=ts,
                open=o,
                high=h,
                low=l,
                close=c,
                volume=float(row.get("volume") or 0.0),
                source=row.get("source") or "history",
            )


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    """DataFrame(timestamp/open/high/low/close[/volume]) -> Candle 列表（按时间升序）。"""
    if "timestamp" not in df.columns and "ts" in df.columns:
        df = df.rename(columns={"ts": "timestamp"})
    for col in ("timestamp", "open", "high", "low", "close"):
        if col not in df.columns:
            raise ValueError(f"candle data requires column: {col}")
    if "volume" not in df.columns:
        df = df.assign(volume=0.0)
    df = df.sort_values("timestamp", kind="mergesort")
    return [
        Candle(int(ts), float(o), float(h), float(l), float(c), float(v))
        for ts, o, h, l, c, v in df[["timestamp", "open", "high", "low", "close", "volume"]].itertuples(index=False)
    ]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Candle 列表 -> DataFrame，列顺序固定，便于挂因子。"""
    rows = [c.to_dict() for c in candles]
    return pd.DataFrame(rows, columns=["timestamp", "open", "high", "low", "close", "volume"])


def load_candles_from_csv(path: str | Path) -> list[Candle]:
    return frame_to_candles(pd.read_csv(path))


def load_candles_from_json(path: str | Path) -> list[Candle]:
    """读取 JSON 数组（或 {"candles": [...]}）形式的 K 线。"""
    raw: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("candles", [])
    if not isinstance(raw, list):
        raise ValueError("candle json must be a list")
    return sorted((Candle.from_dict(item) for item in raw), key=lambda c: c.timestamp)


def load_candles(path: str | Path) -> list[Candle]:
    p = Path(path)
    if p.suffix.lower() == ".json":
        return load_candles_from_json(p)
    return load_candles_from_csv(p)


def dump_candles_json(candles: Iterable[Candle], path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps([c.to_dict() for c in candles], indent=2), encoding="utf-8")
