"""
logging_utils.py - 構造化ログ基盤

activitymanager 名前空間のロガーを JSON/テキスト形式で出力する。
既存の logging.getLogger() パターンと互換性を保つ。

主要コンポーネント:
- StructuredFormatter: JSON/テキスト形式のログフォーマッタ
- StructuredLogger: logging.Logger のラッパー（msgid などのコンテキスト付与）
- CorrelationContext: 配信（delivery）単位の correlation_id 管理
- get_structured_logger(): キャッシュ付きファクトリ関数
- configure_logging(): activitymanager 名前空間のログ設定
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional


ROOT_LOGGER_NAME = "activitymanager"


# ============================================================
# CorrelationContext
# ============================================================

_correlation_local = threading.local()


class CorrelationContext:
    """
    1回の配信処理やAPI呼び出しの間、同じ correlation_id をログに付与する。

    threading.local ベースのスタックで管理するためネスト可能。

    Usage:
        with CorrelationContext():
            logger.info("Boot status update")   # correlation_id 付き
    """

    def __init__(self, correlation_id: Optional[str] = None) -> None:
        self._correlation_id = correlation_id or uuid.uuid4().hex[:12]

    def __enter__(self) -> "CorrelationContext":
        stack = getattr(_correlation_local, "stack", None)
        if stack is None:
            stack = _correlation_local.stack = []
        stack.append(self._correlation_id)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        stack = getattr(_correlation_local, "stack", None)
        if stack:
            stack.pop()

    @property
    def correlation_id(self) -> str:
        return self._correlation_id


def get_correlation_id() -> Optional[str]:
    """現在のスレッドの correlation_id を取得する。"""
    stack = getattr(_correlation_local, "stack", None)
    if stack:
        return stack[-1]
    return None


def clear_correlation_id() -> None:
    """現在のスレッドの correlation_id をクリアする（テスト用）。"""
    _correlation_local.stack = []


# ============================================================
# StructuredFormatter
# ============================================================

def _utc_timestamp(created: float) -> str:
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """
    JSON形式（デフォルト）またはテキスト形式でログレコードをフォーマットする。

    JSON形式:
        {"timestamp": "...", "level": "DEBUG", "logger": "activitymanager...",
         "message": "...", "correlation_id": "...", "msgid": "...", ...}

    テキスト形式（AMGR_LOG_FORMAT=text or fmt_type="text"）:
        2025-01-01T00:00:00Z [DEBUG] activitymanager... - message [msgid=...]
    """

    def __init__(self, fmt_type: Optional[str] = None) -> None:
        super().__init__()
        if fmt_type is None:
            fmt_type = os.environ.get("AMGR_LOG_FORMAT", "json").lower()
        self._fmt_type = fmt_type

    @property
    def fmt_type(self) -> str:
        return self._fmt_type

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        if self._fmt_type == "text":
            return self._format_text(record)
        return self._format_json(record)

    def _format_json(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "correlation_id": get_correlation_id(),
        }

        context_data = getattr(record, "context_data", None)
        if isinstance(context_data, dict):
            for key, value in context_data.items():
                log_entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)

    def _format_text(self, record: logging.LogRecord) -> str:
        parts = [
            _utc_timestamp(record.created),
            f"[{record.levelname}]",
            record.name,
            "-",
            record.message,
        ]

        correlation_id = get_correlation_id()
        if correlation_id:
            parts.append(f"(correlation_id={correlation_id})")

        context_data = getattr(record, "context_data", None)
        if isinstance(context_data, dict) and context_data:
            parts.append("[" + " ".join(f"{k}={v}" for k, v in context_data.items()) + "]")

        result = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            result += "\n" + self.formatException(record.exc_info)
        return result


# ============================================================
# StructuredLogger
# ============================================================

class StructuredLogger:
    """
    logging.Logger をラップし、キーワード引数をコンテキストとして付与する。

    Usage:
        logger = get_structured_logger("activitymanager.systemmanagerproxy")
        logger.warning("Subscription failed, retrying", msgid="SM_BOOTSTS_UPDATE_RETRY")

        # bind() で共通コンテキストを設定
        cm_logger = logger.bind(container="com.example.app")
    """

    def __init__(self, name: str, **default_context: Any) -> None:
        self._logger = logging.getLogger(name)
        self._name = name
        self._default_context: Dict[str, Any] = dict(default_context)

    @property
    def name(self) -> str:
        return self._name

    @property
    def logger(self) -> logging.Logger:
        """内部の logging.Logger（caplog 等との互換のため）。"""
        return self._logger

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """デフォルトコンテキストに kwargs をマージした新しいロガーを返す。"""
        return StructuredLogger(self._name, **{**self._default_context, **kwargs})

    def _log(self, level: int, msg: str, *args: Any, exc_info: Any = None, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        context_data = dict(self._default_context)
        context_data.update(kwargs)
        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"context_data": context_data})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: Any = None, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)


# ============================================================
# get_structured_logger (ファクトリ関数)
# ============================================================

_logger_cache: Dict[str, StructuredLogger] = {}
_logger_cache_lock = threading.Lock()


def get_structured_logger(name: str) -> StructuredLogger:
    """
    StructuredLogger のファクトリ関数。同じ name には同じインスタンスを返す。

    Args:
        name: ロガー名（例: "activitymanager.resourcecontainermanager"）
    """
    if name in _logger_cache:
        return _logger_cache[name]

    with _logger_cache_lock:
        if name not in _logger_cache:
            _logger_cache[name] = StructuredLogger(name)
        return _logger_cache[name]


def reset_logger_cache() -> None:
    """ロガーキャッシュをリセットする（テスト用）。"""
    with _logger_cache_lock:
        _logger_cache.clear()


# ============================================================
# configure_logging
# ============================================================

_configured = False
_configure_lock = threading.Lock()


def _close_handlers(logger: logging.Logger) -> None:
    for h in logger.handlers[:]:
        h.close()
    logger.handlers.clear()


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    output: str = "stderr",
) -> None:
    """
    activitymanager 名前空間のログ設定を行う。

    Args:
        level: ログレベル（DEBUG/INFO/WARNING/ERROR/CRITICAL）
        fmt: 出力形式（"json" or "text"）
        output: 出力先（"stderr" or ファイルパス）

    Raises:
        ValueError: 未知のログレベル
    """
    global _configured

    with _configure_lock:
        numeric_level = getattr(logging, level.upper(), None)
        if not isinstance(numeric_level, int):
            raise ValueError(f"Invalid log level: {level}")

        if output == "stderr":
            handler: logging.Handler = logging.StreamHandler(sys.stderr)
        else:
            handler = logging.FileHandler(output, encoding="utf-8")
        handler.setFormatter(StructuredFormatter(fmt_type=fmt.lower()))
        handler.setLevel(numeric_level)

        root = logging.getLogger(ROOT_LOGGER_NAME)
        _close_handlers(root)
        root.addHandler(handler)
        root.setLevel(numeric_level)
        root.propagate = False

        _configured = True


def is_configured() -> bool:
    """configure_logging() で設定済みかどうか。"""
    return _configured


def reset_configuration() -> None:
    """設定状態をリセットする（テスト用）。"""
    global _configured
    with _configure_lock:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        _close_handlers(root)
        root.setLevel(logging.NOTSET)
        root.propagate = True
        _configured = False
