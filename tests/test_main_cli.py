from __future__ import annotations

import json
from pathlib import Path

import pytest

import main as app_main
from market_data.loader import dump_candles_json, load_candles
from shared.models.models import Candle


def _candles_file(tmp_path: Path, n: int = 80) -> Path:
    candles = []
    for i in range(n):
        close = 100.0 + (i % 7) - (i % 3) * 0.5
        open_ = 100.0 + ((i - 1) % 7) - ((i - 1) % 3) * 0.5 if i else close
        candles.append(Candle((i + 1) * 60_000, open_, max(open_, close) + 0.2, min(open_, close) - 0.2, close, 1.0))
    path = tmp_path / "candles.json"
    dump_candles_json(candles, path)
    return path


def _config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yml"
    path.write_text("leaderboard:\n  min_trades: 0\n  payout: 85\n", encoding="utf-8")
    return path


def test_resample_writes_candles(tmp_path, capsys):
    ticks = tmp_path / "ticks.csv"
    rows = ["symbol,timestamp,price"] + [f"BTCUSDT,{1_700_000_040 + i},{50_000 + i}" for i in range(90)]
    ticks.write_text("\n".join(rows) + "\n", encoding="utf-8")
    out = tmp_path / "out" / "candles.json"

    assert app_main.main(["resample", "--ticks", str(ticks), "--out", str(out)]) == 0
    candles = load_candles(out)
    assert [c.volume for c in candles] == [60, 30]
    assert "2 candles written" in capsys.readouterr().out


def test_missing_input_is_usage_error(tmp_path, capsys):
    code = app_main.main(["resample", "--ticks", str(tmp_path / "nope.csv")])
    assert code == app_main.EXIT_USAGE
    assert "error: file not found" in capsys.readouterr().err


def test_subcommand_is_required():
    with pytest.raises(SystemExit) as exc:
        app_main.main([])
    assert exc.value.code == 2


def test_backtest_prints_summary_and_exports(tmp_path, capsys):
    trades_csv = tmp_path / "trades.csv"
    code = app_main.main(
        [
            "backtest",
            "--candles",
            str(_candles_file(tmp_path)),
            "--strategy",
            "rsi-ob-os",
            "--symbol",
            "BTCUSDT",
            "--param",
            "period=7",
            "--trades-csv",
            str(trades_csv),
        ]
    )
    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["strategy_id"] == "rsi-ob-os"
    assert summary["total_trades"] >= 0
    assert trades_csv.exists()


def test_backtest_trades_csv_includes_configured_factors(tmp_path, capsys):
    cfg = tmp_path / "config.yml"
    cfg.write_text("factors:\n  - type: rsi\n    period: 7\n  - type: adx\n", encoding="utf-8")
    trades_csv = tmp_path / "trades.csv"
    code = app_main.main(
        [
            "backtest",
            "--candles",
            str(_candles_file(tmp_path)),
            "--strategy",
            "rsi-ob-os",
            "--config",
            str(cfg),
            "--trades-csv",
            str(trades_csv),
        ]
    )
    assert code == 0
    header = trades_csv.read_text(encoding="utf-8").splitlines()[0].split(",")
    assert header[:2] == ["entry_time", "entry_price"]
    assert {"rsi_7", "adx", "plus_di", "minus_di"} <= set(header)


def test_backtest_report_uses_config(tmp_path, capsys):
    code = app_main.main(
        [
            "backtest",
            "--candles",
            str(_candles_file(tmp_path)),
            "--strategy",
            "vote",
            "--config",
            str(_config_file(tmp_path)),
            "--report",
        ]
    )
    assert code == 0
    assert "BACKTEST REPORT" in capsys.readouterr().out


@pytest.mark.parametrize(
    "extra,message",
    [
        (["--strategy", "nope"], "unknown strategy"),
        (["--strategy", "vote", "--param", "period"], "invalid --param"),
        (["--strategy", "vote", "--param", "period=abc"], "invalid --param value"),
    ],
)
def test_backtest_usage_errors(tmp_path, capsys, extra, message):
    code = app_main.main(["backtest", "--candles", str(_candles_file(tmp_path))] + extra)
    assert code == app_main.EXIT_USAGE
    assert message in capsys.readouterr().err


def test_backtest_short_history_is_usage_error(tmp_path, capsys):
    code = app_main.main(["backtest", "--candles", str(_candles_file(tmp_path, n=20)), "--strategy", "vote"])
    assert code == app_main.EXIT_USAGE
    assert "Not enough valid candles" in capsys.readouterr().err


def test_leaderboard_then_extract_config(tmp_path, capsys):
    lb_dir = tmp_path / "leaderboards"
    lb_path = lb_dir / "BTCUSDT.json"
    code = app_main.main(
        [
            "leaderboard",
            "--candles",
            str(_candles_file(tmp_path)),
            "--symbol",
            "BTCUSDT",
            "--config",
            str(_config_file(tmp_path)),
            "--out",
            str(lb_path),
        ]
    )
    assert code == 0
    assert "Strategy Leaderboard BTCUSDT" in capsys.readouterr().out
    saved = json.loads(lb_path.read_text(encoding="utf-8"))
    assert saved["config"]["symbol"] == "BTCUSDT"
    assert saved["config"]["payout"] == 85
    assert saved["total_strategies"] == 25

    assert app_main.main(["extract-config", str(lb_path), "--top", "2", "--data-source", "demo"]) == 0
    doc = json.loads(capsys.readouterr().out)
    assert doc["dataSource"] == "demo"
    assert len(doc["symbols"]["BTCUSDT"]["strategies"]) == 2
    expected = [e["strategy_id"] for e in sorted(saved["entries"], key=lambda e: e["rank"])[:2]]
    assert doc["symbols"]["BTCUSDT"]["strategies"] == expected

    (lb_dir / "notes.json").write_text('{"hello": 1}', encoding="utf-8")
    out = tmp_path / "strategy_config.yml"
    assert app_main.main(["extract-config", str(lb_dir), "--multi", "--out", str(out)]) == 0
    assert "1 symbol(s)" in capsys.readouterr().out
    assert out.exists()


def test_leaderboard_text_report(tmp_path, capsys):
    code = app_main.main(
        ["leaderboard", "--candles", str(_candles_file(tmp_path)), "--symbol", "ETHUSDT", "--report"]
    )
    assert code == 0
    assert "STRATEGY LEADERBOARD  ETHUSDT" in capsys.readouterr().out


def test_extract_config_entries_array(tmp_path, capsys):
    entries = tmp_path / "entries.json"
    entries.write_text(
        json.dumps(
            [
                {"strategyId": "rsi-bb", "strategyName": "RSI-BB", "compositeScore": 40, "totalTrades": 50},
                {"strategyId": "zmr-60", "strategyName": "ZMR-60", "compositeScore": 70, "totalTrades": 50},
            ]
        ),
        encoding="utf-8",
    )
    assert app_main.main(["extract-config", str(entries)]) == app_main.EXIT_USAGE
    assert "--symbol is required" in capsys.readouterr().err

    assert app_main.main(["extract-config", str(entries), "--symbol", "EURUSD-OTC"]) == 0
    doc = json.loads(capsys.readouterr().out)
    assert doc["symbols"]["EURUSD-OTC"]["strategies"] == ["zmr-60", "rsi-bb"]


def test_extract_config_rejects_unknown_format(tmp_path, capsys):
    path = tmp_path / "x.json"
    path.write_text('"just a string"', encoding="utf-8")
    assert app_main.main(["extract-config", str(path), "--symbol", "X"]) == app_main.EXIT_USAGE
    assert "unrecognized input format" in capsys.readouterr().err
    assert app_main.main(["extract-config", str(path), "--multi"]) == app_main.EXIT_USAGE
