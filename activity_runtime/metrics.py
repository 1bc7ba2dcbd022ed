"""
metrics.py - メトリクス収集

コンテナ再割り当て・優先度再計算・boot latch の発火回数など、
ログ以外で観測したい値をスレッドセーフに集計する。

主要コンポーネント:
- MetricsCollector: カウンター / ゲージ
- get_metrics_collector(): キャッシュ付きファクトリ関数
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional, Tuple


# メトリクス名
ENTITY_REASSIGNED = "container_entity_reassigned_total"
PRIORITY_UPDATES = "container_priority_updates_total"
CONTAINERS = "containers"
BOOT_SATISFACTION_PASSES = "boot_satisfaction_passes_total"
SUBSCRIPTION_CALLS = "bootstatus_subscription_calls_total"
SUBSCRIPTION_RETRIES = "bootstatus_subscription_retries_total"
SUBSCRIPTION_PERMANENT_FAILURES = "bootstatus_subscription_permanent_failures_total"


LabelKey = Tuple[Tuple[str, str], ...]


def _normalize_labels(labels: Optional[Dict[str, str]]) -> LabelKey:
    """labels dict を hashable なタプルに変換する。"""
    if not labels:
        return ()
    return tuple(sorted(labels.items()))


class MetricsCollector:
    """
    スレッドセーフなメトリクス収集クラス。

    Usage:
        collector = MetricsCollector()
        collector.increment(PRIORITY_UPDATES, labels={"container": "com.example"})
        collector.set_gauge(CONTAINERS, 3)
        snap = collector.snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, Dict[LabelKey, float]] = {}
        self._gauges: Dict[str, Dict[LabelKey, float]] = {}

    def increment(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None,
        value: float = 1,
    ) -> None:
        """カウンターを増加させる（value は非負）。"""
        if value < 0:
            raise ValueError("counter increment value must be non-negative")
        key = _normalize_labels(labels)
        with self._lock:
            bucket = self._counters.setdefault(name, {})
            bucket[key] = bucket.get(key, 0.0) + value

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """ゲージの値を設定する。"""
        key = _normalize_labels(labels)
        with self._lock:
            self._gauges.setdefault(name, {})[key] = value

    def counter_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """カウンターの現在値（未記録なら 0.0）。"""
        with self._lock:
            return self._counters.get(name, {}).get(_normalize_labels(labels), 0.0)

    def gauge_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        with self._lock:
            return self._gauges.get(name, {}).get(_normalize_labels(labels))

    def snapshot(self) -> Dict[str, Any]:
        """
        全メトリクスのスナップショットを返す。

        Returns:
            {
                "counters": {"name": [{"labels": {...}, "value": 1.0}, ...]},
                "gauges": {"name": [{"labels": {...}, "value": 3.0}, ...]},
            }
        """
        with self._lock:
            return {
                "counters": {
                    name: [{"labels": dict(key), "value": value} for key, value in buckets.items()]
                    for name, buckets in self._counters.items()
                },
                "gauges": {
                    name: [{"labels": dict(key), "value": value} for key, value in buckets.items()]
                    for name, buckets in self._gauges.items()
                },
            }

    def reset(self) -> None:
        """全メトリクスをクリアする。"""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()


# ============================================================
# get_metrics_collector (ファクトリ関数)
# ============================================================

_metrics_collector_instance: Optional[MetricsCollector] = None
_metrics_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """プロセス共有の MetricsCollector を返す（キャッシュ付き）。"""
    global _metrics_collector_instance
    if _metrics_collector_instance is not None:
        return _metrics_collector_instance

    with _metrics_collector_lock:
        if _metrics_collector_instance is None:
            _metrics_collector_instance = MetricsCollector()
        return _metrics_collector_instance


def reset_metrics_collector() -> None:
    """MetricsCollector インスタンスをリセットする（テスト用）。"""
    global _metrics_collector_instance
    with _metrics_collector_lock:
        _metrics_collector_instance = None
