"""核心数据结构：Tick/Candle/RegimeInfo/StrategyResult/Signal。"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Literal, Mapping

Direction = Literal["CALL", "PUT"]
CALL: Direction = "CALL"
PUT: Direction = "PUT"
DIRECTIONS: tuple[str, ...] = (CALL, PUT)

STRONG_UPTREND = "strong_uptrend"
WEAK_UPTREND = "weak_uptrend"
RANGING = "ranging"
WEAK_DOWNTREND = "weak_downtrend"
STRONG_DOWNTREND = "strong_downtrend"
UNKNOWN = "unknown"
REGIMES: tuple[str, ...] = (
    STRONG_UPTREND,
    WEAK_UPTREND,
    RANGING,
    WEAK_DOWNTREND,
    STRONG_DOWNTREND,
    UNKNOWN,
)

SIGNAL_OUTCOMES: tuple[str, ...] = ("win", "loss", "tie")


@dataclass(frozen=True)
class Tick:
    """原始价格 Tick（秒级时间戳，OHLC 冗余同值）。"""
    symbol: str
    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    source: str = "realtime"

    @property
    def price(self) -> float:
        return self.close

    @classmethod
    def from_price(cls, symbol: str, timestamp: float, price: float, *, volume: float = 0.0, source: str = "realtime") -> "Tick":
        return cls(symbol, timestamp, price, price, price, price, volume, source)


@dataclass(frozen=True)
class Candle:
    """K 线数据（毫秒时间戳）。"""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candle":
        ts = data.get("timestamp", data.get("ts"))
        if ts is None:
            raise ValueError("candle requires timestamp")
        return cls(
            timestamp=int(ts),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class RegimeInfo:
    """市场状态：regime 标签 + ADX + 方向（+1/0/-1）。"""
    regime: str
    adx: float
    direction: int


@dataclass
class StrategyResult:
    """策略评估输出。signal 为 None 表示无观点。"""
    signal: Direction | None
    confidence: float = 0.0
    reason: str = ""
    indicators: dict[str, float] = field(default_factory=dict)
    strategy_id: str | None = None
    expiry_override: int | None = None

    @property
    def fired(self) -> bool:
        return self.signal is not None

    def with_id(self, strategy_id: str) -> "StrategyResult":
        return replace(self, strategy_id=strategy_id, indicators=dict(self.indicators))

    @classmethod
    def none(cls, reason: str = "No signal", indicators: dict[str, float] | None = None) -> "StrategyResult":
        return cls(signal=None, confidence=0.0, reason=reason, indicators=dict(indicators or {}))


@dataclass
class Signal:
    """生成器发出的交易信号，status 只允许从 pending 变更一次。"""
    id: str
    timestamp: int
    symbol: str
    direction: Direction
    strategy_id: str
    strategy: str
    regime: str
    confidence: float
    expiry: int
    entry_price: float
    indicators: dict[str, float] = field(default_factory=dict)
    status: str = "pending"

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
