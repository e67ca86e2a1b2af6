"""执行引擎层（engine）。

- `SignalGenerator`：实时逐根 K 线出信号；
- `BacktestEngine`：单策略二元期权回测（`run(config, candles) -> BacktestResult`）；
- `merge`：横盘均值回归策略的合并决策表。

命令行入口由仓库根目录 `main.py` 统一承载。
"""
