"""binsignal 统一命令行入口。

子命令：

- `resample`：Tick CSV -> 固定周期 K 线（JSON）。
- `backtest`：单策略回测，可导出逐笔交易 CSV。
- `leaderboard`：对全部内置策略回测并排名，结果存为 JSON。
- `extract-config`：排行榜结果 -> 按品种的策略偏好配置文档。
"""

from __future__ import annotations

import argparse
import json
import math
import sys
from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

from algo.factors.registry import build_factors, candles_with_factors
from engine.backtest_engine import BacktestEngine, InsufficientDataError, export_trades_csv
from market_data.loader import dump_candles_json, load_candles, load_ticks_from_csv
from market_data.resampler import resample_ticks
from research.leaderboard import format_leaderboard_report, load_leaderboard, run_leaderboard, save_leaderboard
from research.schemas import LeaderboardEntry, LeaderboardResult, is_leaderboard_result
from research.statistics import calculate_detailed_statistics, format_statistics_report
from shared.config.config_loader import load_config
from shared.config.schema import BacktestConfig, MainConfig
from utils.logging import setup_logger
from utils.strategy_config import (
    dump_strategy_config,
    extract_from_entries,
    extract_multi_symbol_config,
    extract_strategy_config,
    to_dict,
)

logger = setup_logger("binsignal")
console = Console()

EXIT_OK = 0
EXIT_USAGE = 2


class UsageError(Exception):
    """参数组合不合法或输入文件不可用。"""


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="binsignal", description="二元期权信号与回测工具")
    sub = parser.add_subparsers(dest="task", required=True)

    p_resample = sub.add_parser("resample", help="Tick CSV 聚合为 K 线")
    p_resample.add_argument("--ticks", required=True, help="tick CSV 路径")
    p_resample.add_argument("--interval", type=int, default=60, help="K 线周期（秒）")
    p_resample.add_argument("--min-ticks", type=int, default=1, help="每根 K 线最少 tick 数")
    p_resample.add_argument("--keep-payout", action="store_true", help="保留 payout 形态的 tick")
    p_resample.add_argument("--out", default=None, help="输出 JSON；缺省只打印数量")

    p_bt = sub.add_parser("backtest", help="单策略回测")
    p_bt.add_argument("--candles", required=True, help="K 线 CSV/JSON")
    p_bt.add_argument("--strategy", required=True, help="策略 id")
    p_bt.add_argument("--config", default=None, help="YAML 配置；取 leaderboard 段的回测参数")
    p_bt.add_argument("--symbol", default="", help="交易品种")
    p_bt.add_argument("--param", action="append", default=[], metavar="KEY=VALUE", help="覆盖策略参数，可重复")
    p_bt.add_argument("--trades-csv", default=None, help="导出逐笔交易 CSV；配置含 factors 时附带入场时刻指标")
    p_bt.add_argument("--report", action="store_true", help="打印统计报告")

    p_lb = sub.add_parser("leaderboard", help="全部策略回测并排名")
    p_lb.add_argument("--candles", required=True, help="K 线 CSV/JSON")
    p_lb.add_argument("--symbol", required=True, help="交易品种")
    p_lb.add_argument("--config", default=None, help="YAML 配置")
    p_lb.add_argument("--out", default=None, help="输出排行榜 JSON")
    p_lb.add_argument("--report", action="store_true", help="打印排行榜报告")

    p_ex = sub.add_parser("extract-config", help="排行榜 -> 策略偏好配置")
    p_ex.add_argument("input", help="排行榜 JSON；--multi 时为目录")
    p_ex.add_argument("--symbol", default=None, help="输入为条目数组时必填")
    p_ex.add_argument("--top", type=int, default=3, help="每个品种保留前 N 个策略")
    p_ex.add_argument("--min-trades", type=int, default=0)
    p_ex.add_argument("--data-source", choices=["demo", "real", "unknown"], default="unknown")
    p_ex.add_argument("--multi", action="store_true", help="读取目录下全部排行榜 JSON")
    p_ex.add_argument("--out", default=None, help="输出路径（.json/.yml）；缺省打印")

    return parser


def _main_config(path: str | None) -> MainConfig:
    if path is None:
        return MainConfig()
    return load_config(path)


def _require_file(path: str | Path) -> Path:
    p = Path(path)
    if not p.is_file():
        raise UsageError(f"file not found: {p}")
    return p


def _parse_params(items: list[str]) -> dict[str, float]:
    params: dict[str, float] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise UsageError(f"invalid --param (expected KEY=VALUE): {item}")
        try:
            params[key.strip()] = float(value)
        except ValueError as exc:
            raise UsageError(f"invalid --param value: {item}") from exc
    return params


def cmd_resample(args: argparse.Namespace) -> int:
    ticks = list(load_ticks_from_csv(_require_file(args.ticks)))
    candles = resample_ticks(
        ticks,
        interval_seconds=args.interval,
        min_ticks_per_candle=args.min_ticks,
        filter_payout=not args.keep_payout,
    )
    if args.out:
        dump_candles_json(candles, args.out)
        print(f"{len(candles)} candles written to {args.out}")
    else:
        print(f"{len(candles)} candles from {len(ticks)} ticks")
    return EXIT_OK


def cmd_backtest(args: argparse.Namespace) -> int:
    main_cfg = _main_config(args.config)
    cfg = main_cfg.leaderboard
    candles = load_candles(_require_file(args.candles))
    engine = BacktestEngine()
    if args.strategy not in engine.registry:
        raise UsageError(f"unknown strategy: {args.strategy} (known: {', '.join(engine.registry.ids())})")

    base: BacktestConfig = cfg.to_backtest_config(args.strategy, _parse_params(args.param))
    bt_config = base.model_copy(update={"symbol": args.symbol or cfg.symbol})
    try:
        result = engine.run(bt_config, candles)
    except InsufficientDataError as exc:
        raise UsageError(str(exc)) from exc

    if args.trades_csv:
        features = candles_with_factors(candles, build_factors(main_cfg.factors)) if main_cfg.factors else None
        export_trades_csv(result, args.trades_csv, features)
    if args.report:
        print(format_statistics_report(calculate_detailed_statistics(result.trades, result.initial_balance)))
    else:
        print(json.dumps(_summary_line(result.summary()), ensure_ascii=False))
    return EXIT_OK


def _summary_line(summary: dict[str, Any]) -> dict[str, Any]:
    keys = ("strategy_id", "total_trades", "wins", "losses", "ties", "win_rate", "net_profit", "max_drawdown")
    return {k: summary.get(k) for k in keys}


def leaderboard_table(result: LeaderboardResult) -> Table:
    """排行榜的终端表格视图。"""
    table = Table(title=f"Strategy Leaderboard {result.symbol or '-'}", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Strategy", style="cyan", no_wrap=True)
    table.add_column("Grade", justify="center")
    table.add_column("Score", justify="right", style="yellow")
    table.add_column("Trades", justify="right")
    table.add_column("WR %", justify="right", style="green")
    table.add_column("PF", justify="right")
    table.add_column("MDD %", justify="right", style="red")
    table.add_column("Net", justify="right")
    for e in result.entries:
        pf = "inf" if math.isinf(e.profit_factor) else f"{e.profit_factor:.2f}"
        table.add_row(
            str(e.rank),
            e.strategy_id,
            e.grade or "-",
            f"{e.composite_score:.1f}",
            str(e.total_trades),
            f"{e.win_rate:.1f}",
            pf,
            f"{e.max_drawdown_percent:.1f}",
            f"{e.net_profit:+.2f}",
        )
    table.caption = f"ranked {len(result.entries)} / {result.total_strategies}, filtered {result.filtered_out}"
    return table


def cmd_leaderboard(args: argparse.Namespace) -> int:
    cfg = _main_config(args.config).leaderboard.model_copy(update={"symbol": args.symbol})
    candles = load_candles(_require_file(args.candles))
    result = run_leaderboard(candles, cfg)
    if args.out:
        save_leaderboard(result, args.out)
    if args.report:
        print(format_leaderboard_report(result))
    else:
        console.print(leaderboard_table(result))
    return EXIT_OK


def _load_results_dir(directory: Path) -> list[LeaderboardResult]:
    if not directory.is_dir():
        raise UsageError(f"--multi expects a directory: {directory}")
    results = []
    for path in sorted(directory.glob("*.json")):
        data = json.loads(path.read_text(encoding="utf-8"))
        if is_leaderboard_result(data):
            results.append(LeaderboardResult.from_dict(data))
        else:
            logger.info("skip non-leaderboard file: %s", path.name)
    return results


def cmd_extract_config(args: argparse.Namespace) -> int:
    if args.multi:
        results = _load_results_dir(Path(args.input))
        doc = extract_multi_symbol_config(
            results, top_n=args.top, min_trades=args.min_trades, data_source=args.data_source
        )
    else:
        path = _require_file(args.input)
        data = json.loads(path.read_text(encoding="utf-8"))
        if is_leaderboard_result(data):
            result = load_leaderboard(path)
            if args.symbol:
                doc = extract_from_entries(
                    result.entries, args.symbol, args.top, args.min_trades, data_source=args.data_source
                )
            else:
                doc = extract_strategy_config(
                    result, top_n=args.top, min_trades=args.min_trades, data_source=args.data_source
                )
        elif isinstance(data, list):
            if not args.symbol:
                raise UsageError("--symbol is required when the input is an entries array")
            entries = [LeaderboardEntry.from_dict(item) for item in data]
            doc = extract_from_entries(entries, args.symbol, args.top, args.min_trades, data_source=args.data_source)
        else:
            raise UsageError(f"unrecognized input format: {path}")

    if args.out:
        dump_strategy_config(doc, args.out)
        print(f"strategy config written to {args.out} ({len(doc.symbols)} symbol(s))")
    else:
        print(json.dumps(to_dict(doc), indent=2, ensure_ascii=False))
    return EXIT_OK


_COMMANDS = {
    "resample": cmd_resample,
    "backtest": cmd_backtest,
    "leaderboard": cmd_leaderboard,
    "extract-config": cmd_extract_config,
}


def main(argv: list[str] | None = None) -> int:
    """程序主入口。

    Parameters
    ----------
    argv:
        可选的参数列表；为 None 时读取 sys.argv。

    Returns
    -------
    int
        退出码：成功 0，参数或输入错误 2（argparse 自身的错误同样以 2 退出）。
    """
    args = build_parser().parse_args(argv)
    try:
        return _COMMANDS[args.task](args)
    except UsageError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
