"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载。
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from shared.config.schema import (
    BacktestConfig,
    HighWinRateConfig,
    LeaderboardConfig,
    LeaderboardWeights,
    MainConfig,
    ResampleConfig,
    SignalGeneratorConfig,
)

__all__ = [
    "BacktestConfig",
    "HighWinRateConfig",
    "LeaderboardConfig",
    "LeaderboardWeights",
    "MainConfig",
    "ResampleConfig",
    "SignalGeneratorConfig",
    "load_config",
]

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_env_file(env_path: Path) -> None:
    if env_path.exists():
        load_dotenv(env_path, override=False)


def _load_envs(cfg_path: Path) -> None:
    """
    加载配置文件目录与其上级目录下的 .env/.env.local（不覆盖已有环境变量）。
    """
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        _load_env_file(env_file)


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_config(path: str | Path, load_env: bool = True, expand_env: bool = True) -> MainConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand_env:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    MainConfig
        校验后的配置对象。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        缺失环境变量或 schema 校验失败（pydantic.ValidationError 是 ValueError 子类）。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    with cfg_path.open("r", encoding="utf-8") as f:
        raw_cfg: Any = yaml.safe_load(f) or {}
    if not isinstance(raw_cfg, dict):
        raise ValueError("config root must be a mapping")

    if expand_env:
        raw_cfg = _expand_env(raw_cfg)
    return MainConfig.model_validate(raw_cfg)
