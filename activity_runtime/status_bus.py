"""
status_bus.py - プロセス内 publish/subscribe とトランスポート実装

スレッドセーフ版。topic は呼び出し先 endpoint（例: getBootStatus の URI）。
retain=True で publish した値は保持され、新しい購読者へ即座に再送される
（subscribe 呼び出しの初回応答が現在値になるのと同じ挙動）。

- StatusBus: topic 単位の購読管理
- BusTransport: StatusBus を standing_call.Transport として使うアダプタ
- BootStatusPublisher: getBootStatus の送信側（テスト・単体起動用）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logging_utils import get_structured_logger
from .standing_call import DeliverFunc, Delivery, FailureKind


Handler = Callable[[Any], None]

BOOT_STATUS_ENDPOINT = "palm://com.palm.systemmanager/getBootStatus"

logger = get_structured_logger("activitymanager.statusbus")


@dataclass
class StatusBus:
    """
    シンプルな Status Bus（スレッドセーフ）
    """

    _subs: Dict[str, List[Tuple[str, Handler]]] = field(default_factory=dict)
    _retained: Dict[str, Any] = field(default_factory=dict)
    _lock: RLock = field(default_factory=RLock)
    _id_counter: int = field(default=0)

    def subscribe(self, topic: str, handler: Handler, replay: bool = True) -> str:
        """handler を topic に登録する。保持値があれば replay する。"""
        with self._lock:
            self._id_counter += 1
            handler_id = f"h{self._id_counter}"
            self._subs.setdefault(topic, []).append((handler_id, handler))
            retained = self._retained.get(topic)

        if replay and retained is not None:
            self._dispatch(topic, handler_id, handler, retained)
        return handler_id

    def publish(self, topic: str, payload: Any, retain: bool = False) -> int:
        """
        topic の全購読者へ配信する。

        Returns:
            配信した購読者数
        """
        with self._lock:
            if retain:
                self._retained[topic] = payload
            handlers = list(self._subs.get(topic, []))

        for handler_id, handler in handlers:
            self._dispatch(topic, handler_id, handler, payload)
        return len(handlers)

    def _dispatch(self, topic: str, handler_id: str, handler: Handler, payload: Any) -> None:
        try:
            handler(payload)
        except Exception:
            # 1つの購読者の失敗で他への配信を止めない
            logger.exception("Handler error", handler_id=handler_id, topic=topic)

    def unsubscribe(self, topic: str, handler_id: str) -> bool:
        with self._lock:
            items = self._subs.get(topic, [])
            kept = [(hid, h) for hid, h in items if hid != handler_id]
            if kept:
                self._subs[topic] = kept
            else:
                self._subs.pop(topic, None)
            return len(kept) != len(items)

    def retained(self, topic: str) -> Optional[Any]:
        with self._lock:
            return self._retained.get(topic)

    def list_subscribers(self) -> Dict[str, List[str]]:
        """topic -> [handler_id...]"""
        with self._lock:
            return {topic: [hid for hid, _ in handlers] for topic, handlers in self._subs.items()}


class _BusSubscription:
    def __init__(self, bus: StatusBus, topic: str):
        self._bus = bus
        self._topic = topic
        self.handler_id: Optional[str] = None

    def cancel(self) -> None:
        if self.handler_id is not None:
            self._bus.unsubscribe(self._topic, self.handler_id)
            self.handler_id = None


class _NullSubscription:
    def cancel(self) -> None:
        pass


class BusTransport:
    """StatusBus 上の Transport。topic に流れる Delivery をそのまま渡す"""

    def __init__(self, bus: StatusBus):
        self._bus = bus

    @property
    def bus(self) -> StatusBus:
        return self._bus

    def open(self, endpoint: str, params: Dict[str, Any], deliver: DeliverFunc):
        if not params.get("subscribe"):
            # 単発呼び出し: 現在値だけ返す
            retained = self._bus.retained(endpoint)
            if retained is not None:
                deliver(retained)
            return _NullSubscription()

        subscription = _BusSubscription(self._bus, endpoint)
        subscription.handler_id = self._bus.subscribe(endpoint, deliver)
        return subscription


class BootStatusPublisher:
    """
    getBootStatus の送信側。

    set_status() は保持される（後から購読した側も現在値を受け取る）。
    fail() は保持されない一回限りの失敗通知。
    """

    def __init__(self, bus: StatusBus, endpoint: str = BOOT_STATUS_ENDPOINT):
        self._bus = bus
        self._endpoint = endpoint

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def set_status(self, finished: bool, first_use: bool = False) -> int:
        return self._bus.publish(
            self._endpoint,
            Delivery.ok({"finished": bool(finished), "firstUse": bool(first_use)}),
            retain=True,
        )

    def publish_raw(self, response: Dict[str, Any]) -> int:
        return self._bus.publish(self._endpoint, Delivery.ok(response))

    def fail(self, permanent: bool = False, reason: str = "") -> int:
        kind = FailureKind.PERMANENT if permanent else FailureKind.TRANSIENT
        response = {"returnValue": False, "errorText": reason} if reason else {"returnValue": False}
        return self._bus.publish(self._endpoint, Delivery.failed(kind, response))
