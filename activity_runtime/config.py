"""
config.py - ランタイム設定の読み込み

優先順位（後勝ち）:
    既定値 → YAML 設定ファイル → AMGR_* 環境変数

.env があれば python-dotenv で環境変数に読み込んでから解決する
（既に設定済みの環境変数は上書きしない）。
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .errors import SYS_CONFIG_ERROR, format_error
from .status_bus import BOOT_STATUS_ENDPOINT


ENV_PREFIX = "AMGR_"
ENV_CONFIG_PATH = "AMGR_CONFIG"


@dataclass
class RuntimeConfig:
    """ActivityRuntime の設定"""

    boot_status_endpoint: str = BOOT_STATUS_ENDPOINT
    retry_delay_seconds: float = 0.25
    ui_subsystem_tag: str = "ui"
    containers_enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "json"
    log_output: str = "stderr"
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, expected: type, value: Any) -> Any:
    """文字列（環境変数）や YAML の値を期待型に変換する。"""
    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
            return value.strip().lower() in _TRUE
    elif expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                pass
    elif expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
    elif isinstance(value, str):
        return value

    raise format_error(
        SYS_CONFIG_ERROR,
        reason=f"{name} must be {expected.__name__}, got {value!r}",
        details={"key": name},
    )


def _field_types() -> Dict[str, type]:
    builtin = {"str": str, "int": int, "float": float, "bool": bool}
    return {f.name: builtin[f.type] if isinstance(f.type, str) else f.type for f in fields(RuntimeConfig)}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp)
    except FileNotFoundError:
        raise format_error(SYS_CONFIG_ERROR, reason=f"config file not found: {path}")
    except yaml.YAMLError as exc:
        raise format_error(SYS_CONFIG_ERROR, reason=f"invalid YAML in {path}: {exc}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise format_error(SYS_CONFIG_ERROR, reason=f"{path} must contain a mapping")
    return data


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
) -> RuntimeConfig:
    """
    設定を解決して RuntimeConfig を返す。

    Args:
        path: YAML 設定ファイル（省略時は AMGR_CONFIG、なければファイルなし）
        env: 環境変数（省略時は os.environ。.env もこのときだけ読む）
        dotenv_path: .env のパス（省略時はカレントから探索）

    Raises:
        ActivityManagerError: 未知のキー、型不一致、ファイル不正（SYS_CONFIG_ERROR）
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        env = os.environ

    types_ = _field_types()
    values: Dict[str, Any] = {}

    path = path or env.get(ENV_CONFIG_PATH)
    if path:
        for key, value in _read_yaml(Path(path)).items():
            if key not in types_:
                raise format_error(SYS_CONFIG_ERROR, reason=f"unknown key {key!r} in {path}")
            values[key] = _coerce(key, types_[key], value)

    for key, expected in types_.items():
        raw = env.get(ENV_PREFIX + key.upper())
        if raw is not None:
            values[key] = _coerce(key, expected, raw)

    config = RuntimeConfig(**values)
    if config.retry_delay_seconds < 0:
        raise format_error(SYS_CONFIG_ERROR, reason="retry_delay_seconds must be >= 0")
    return config
