"""排行榜结果 -> 按交易品种的策略偏好配置文档。

文档是可复现的构建产物：
- 品种按字典序；
- 每个品种的策略列表沿用排行榜的确定性排名；
- 每个策略的参数键按字典序。
相同输入与相同 generated_at 时，序列化结果逐字节一致。
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from itertools import groupby
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Literal, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field

from research.schemas import LeaderboardEntry, LeaderboardResult
from utils.hashing import sha256_text
from utils.logging import setup_logger

logger = setup_logger("strategy-config")

DataSource = Literal["demo", "real", "unknown"]


class SymbolStrategyConfig(BaseModel):
    """单个品种：按优先级排列的策略 id + 参数覆盖。"""
    strategies: List[str] = Field(default_factory=list)
    params: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")


class StrategyConfigDocument(BaseModel):
    generated_at: str = Field(alias="generatedAt")
    data_source: DataSource = Field(default="unknown", alias="dataSource")
    symbols: Dict[str, SymbolStrategyConfig] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


def _now_iso(now: Callable[[], datetime] | None = None) -> str:
    dt = now() if now else datetime.now(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def filter_and_sort_entries(entries: Iterable[LeaderboardEntry], min_trades: int = 0) -> list[LeaderboardEntry]:
    """按最小交易数过滤后排序。

    全部条目都已有名次（rank > 0）时按名次升序，否则按综合分降序；
    平局一律按 strategy_id 升序。
    """
    kept = [e for e in entries if e.total_trades >= min_trades]
    if kept and all(e.rank > 0 for e in kept):
        return sorted(kept, key=lambda e: (e.rank, e.strategy_id))
    return sorted(kept, key=lambda e: (-e.composite_score, e.strategy_id))


def _symbol_config(entries: Sequence[LeaderboardEntry]) -> SymbolStrategyConfig:
    strategies: list[str] = []
    params: dict[str, dict[str, float]] = {}
    for entry in entries:
        strategies.append(entry.strategy_id)
        if entry.params:
            params[entry.strategy_id] = {k: float(entry.params[k]) for k in sorted(entry.params)}
    return SymbolStrategyConfig(strategies=strategies, params=params)


def extract_from_entries(
    entries: Iterable[LeaderboardEntry],
    symbol: str,
    top_n: int = 3,
    min_trades: int = 0,
    data_source: DataSource = "unknown",
    now: Callable[[], datetime] | None = None,
) -> StrategyConfigDocument:
    top = filter_and_sort_entries(entries, min_trades)[:top_n]
    symbols = {symbol: _symbol_config(top)} if symbol and top else {}
    return StrategyConfigDocument(generated_at=_now_iso(now), data_source=data_source, symbols=symbols)


def extract_strategy_config(
    result: LeaderboardResult,
    top_n: int = 3,
    min_trades: int = 0,
    data_source: DataSource = "unknown",
    now: Callable[[], datetime] | None = None,
) -> StrategyConfigDocument:
    """单次排行榜结果，品种取自 result.config.symbol。"""
    return extract_from_entries(result.entries, result.symbol, top_n, min_trades, data_source, now)


def _run_order(result: LeaderboardResult) -> tuple:
    return (-result.executed_at, -result.execution_time_ms, -result.total_strategies)


def extract_multi_symbol_config(
    results: Iterable[LeaderboardResult],
    top_n: int = 3,
    min_trades: int = 0,
    data_source: DataSource = "unknown",
    now: Callable[[], datetime] | None = None,
) -> StrategyConfigDocument:
    """多个结果合并成一份配置。

    同一品种有多次运行时取最新一次（executed_at 降序，再按耗时、策略数降序）；
    若该次运行过滤后为空，则回退到下一次运行。
    """
    with_symbol = sorted((r for r in results if r.symbol), key=lambda r: r.symbol)
    symbols: dict[str, SymbolStrategyConfig] = {}
    for symbol, group in groupby(with_symbol, key=lambda r: r.symbol):
        for run in sorted(group, key=_run_order):
            top = filter_and_sort_entries(run.entries, min_trades)[:top_n]
            if top:
                symbols[symbol] = _symbol_config(top)
                break
            logger.info("skip empty leaderboard run: symbol=%s executed_at=%s", symbol, run.executed_at)
    return StrategyConfigDocument(generated_at=_now_iso(now), data_source=data_source, symbols=symbols)


def to_dict(doc: StrategyConfigDocument) -> dict[str, Any]:
    """序列化成带 camelCase 根键的字典，品种与参数键已排序。"""
    symbols: dict[str, Any] = {}
    for symbol in sorted(doc.symbols):
        cfg = doc.symbols[symbol]
        symbols[symbol] = {
            "strategies": list(cfg.strategies),
            "params": {sid: {k: cfg.params[sid][k] for k in sorted(cfg.params[sid])} for sid in cfg.params},
        }
    return {"generatedAt": doc.generated_at, "dataSource": doc.data_source, "symbols": symbols}


def parse_strategy_config(data: Any) -> StrategyConfigDocument:
    """接受完整文档字典，或仅有 {symbol: {...}} 的裸映射。"""
    if isinstance(data, StrategyConfigDocument):
        return data
    if not isinstance(data, dict):
        raise ValueError("strategy config must be a mapping")
    if "symbols" in data and ("generatedAt" in data or "generated_at" in data):
        return StrategyConfigDocument.model_validate(data)
    return StrategyConfigDocument(generated_at=_now_iso(), symbols=data)


def dump_strategy_config(doc: StrategyConfigDocument, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = to_dict(doc)
    if p.suffix.lower() in {".yml", ".yaml"}:
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    p.write_text(text, encoding="utf-8")
    return p


def load_strategy_config(path: str | Path) -> StrategyConfigDocument:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Strategy config file not found: {p}")
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yml", ".yaml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    return parse_strategy_config(data)


def config_digest(doc: StrategyConfigDocument) -> str:
    """不含 generatedAt 的规范化 JSON 的 sha256，用于比较两次生成是否等价。"""
    payload = to_dict(doc)
    payload.pop("generatedAt", None)
    return sha256_text(json.dumps(payload, sort_keys=True, separators=(",", ":")))
