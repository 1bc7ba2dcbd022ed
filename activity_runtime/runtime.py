"""
runtime.py - コンポーネントの組み立てとグローバルアクセサ

ActivityRuntime は以下を所有する:
- EntityRegistry / ContainerManager（コンテナ割り当て）
- MasterRequirementManager と BootStatusProxy（"bootup" Requirement）
- SubsystemScheduler（UI サブシステムの enable/disable を受ける）
- StatusBus / BusTransport（プロセス内の getBootStatus 配信路）
- Diagnostics / MetricsCollector
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Set

from .boot_status_proxy import BootStatusProxy
from .config import RuntimeConfig
from .container_manager import ContainerManager
from .diagnostics import Diagnostics
from .entities import EntityRegistry
from .logging_utils import get_structured_logger
from .metrics import MetricsCollector, get_metrics_collector
from .requirements import MasterRequirementManager
from .standing_call import Transport
from .status_bus import BootStatusPublisher, BusTransport, StatusBus
from .types import JsonDict


logger = get_structured_logger("activitymanager.runtime")


class SubsystemScheduler:
    """
    スケジューラ側のサブシステム有効状態。

    enable_subsystem/disable_subsystem は同じ状態への再呼び出しでも
    副作用を持たない。状態が変わったときだけ listener を呼ぶ。
    """

    def __init__(self) -> None:
        self._enabled: Set[str] = set()
        self._listeners: List[Callable[[str, bool], None]] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: Callable[[str, bool], None]) -> None:
        self._listeners.append(listener)

    def enable_subsystem(self, tag: str) -> None:
        self._set(tag, True)

    def disable_subsystem(self, tag: str) -> None:
        self._set(tag, False)

    def is_enabled(self, tag: str) -> bool:
        with self._lock:
            return tag in self._enabled

    def enabled_subsystems(self) -> List[str]:
        with self._lock:
            return sorted(self._enabled)

    def _set(self, tag: str, enabled: bool) -> None:
        with self._lock:
            if (tag in self._enabled) == enabled:
                return
            if enabled:
                self._enabled.add(tag)
            else:
                self._enabled.discard(tag)
        logger.info("Subsystem %s %s", tag, "enabled" if enabled else "disabled")
        for listener in list(self._listeners):
            listener(tag, enabled)


class ActivityRuntime:
    """コンテナ管理と boot Requirement の提供者をまとめて起動・停止する"""

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        *,
        transport: Optional[Transport] = None,
        bus: Optional[StatusBus] = None,
        timer_factory: Optional[Callable[..., Any]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or RuntimeConfig()
        self.bus = bus or StatusBus()
        self.transport = transport or BusTransport(self.bus)
        self.metrics = metrics or get_metrics_collector()
        self.diagnostics = Diagnostics()

        self.entities = EntityRegistry()
        self.containers = ContainerManager(self.entities, metrics=self.metrics)
        self.scheduler = SubsystemScheduler()
        self.requirements = MasterRequirementManager()

        proxy_kwargs: Dict[str, Any] = {
            "endpoint": self.config.boot_status_endpoint,
            "retry_delay": self.config.retry_delay_seconds,
            "ui_tag": self.config.ui_subsystem_tag,
            "diagnostics": self.diagnostics,
            "metrics": self.metrics,
        }
        if timer_factory is not None:
            proxy_kwargs["timer_factory"] = timer_factory
        self.boot_status = BootStatusProxy(self.transport, self.scheduler, **proxy_kwargs)
        self.boot_status.register_requirements(self.requirements)

        self._enabled = False
        self._lock = threading.Lock()

    def boot_status_publisher(self) -> BootStatusPublisher:
        """プロセス内 StatusBus に getBootStatus を流す送信側。"""
        return BootStatusPublisher(self.bus, self.config.boot_status_endpoint)

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        with self._lock:
            logger.info("Enabling activity runtime")
            if self.config.containers_enabled:
                self.containers.enable()
            self.requirements.enable()
            self._enabled = True

    def disable(self) -> None:
        with self._lock:
            logger.info("Disabling activity runtime")
            self.requirements.disable()
            self.containers.disable()
            self._enabled = False

    def shutdown(self) -> None:
        self.disable()
        self.boot_status.unregister_requirements(self.requirements)

    def info(self) -> JsonDict:
        return {
            "enabled": self._enabled,
            "subsystems": self.scheduler.enabled_subsystems(),
            "requirements": self.requirements.registered_names(),
            "bootStatus": self.boot_status.status(),
        }


# グローバル変数（API / エントリポイントから参照）
_global_runtime: Optional[ActivityRuntime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> ActivityRuntime:
    """
    グローバルな ActivityRuntime を取得する。未初期化なら既定設定で生成する。
    """
    global _global_runtime
    if _global_runtime is not None:
        return _global_runtime
    with _runtime_lock:
        if _global_runtime is None:
            _global_runtime = ActivityRuntime()
        return _global_runtime


def initialize_runtime(config: Optional[RuntimeConfig] = None, **kwargs: Any) -> ActivityRuntime:
    """新しい ActivityRuntime を生成してグローバルに設定する。"""
    global _global_runtime
    runtime = ActivityRuntime(config, **kwargs)
    with _runtime_lock:
        _global_runtime = runtime
    return runtime


def reset_runtime() -> None:
    """グローバルな ActivityRuntime を破棄する（テスト用）。"""
    global _global_runtime
    with _runtime_lock:
        runtime, _global_runtime = _global_runtime, None
    if runtime is not None:
        runtime.disable()
