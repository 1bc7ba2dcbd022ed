"""
standing_call.py - 常駐（subscribe）呼び出しの抽象

明示的にキャンセルされるまで複数回の push を受け取る呼び出し。
配信結果は例外ではなく Delivery（成功 / 失敗+種別）として渡す。
失敗が一時的か恒久的かはトランスポート側が判断する。

- Delivery: 成功なら failure=None、失敗なら FailureKind を持つ
- Transport: endpoint を購読し Subscription を返す
- StandingCall: 同じ呼び出しを再発行(call)・キャンセル(cancel)できるハンドル。
  キャンセル済み/置き換え済みの購読からの配信は捨てる。
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

from .types import JsonDict


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class Delivery:
    """1回分の配信結果"""

    response: JsonDict = field(default_factory=dict)
    failure: Optional[FailureKind] = None

    @classmethod
    def ok(cls, response: JsonDict) -> "Delivery":
        return cls(response=dict(response))

    @classmethod
    def failed(cls, kind: FailureKind, response: Optional[JsonDict] = None) -> "Delivery":
        return cls(response=dict(response or {}), failure=kind)

    @property
    def is_ok(self) -> bool:
        return self.failure is None

    @property
    def is_permanent_failure(self) -> bool:
        return self.failure is FailureKind.PERMANENT


DeliverFunc = Callable[[Delivery], None]


class Subscription(Protocol):
    def cancel(self) -> None: ...


class Transport(Protocol):
    def open(self, endpoint: str, params: Dict[str, Any], deliver: DeliverFunc) -> Subscription: ...


class StandingCall:
    """
    トランスポート上の常駐呼び出し。

    callback は (call, delivery) で呼ばれる。call() を再度呼ぶと
    既存の購読を閉じて同じ endpoint/params で開き直す。
    """

    def __init__(
        self,
        transport: Transport,
        endpoint: str,
        params: Dict[str, Any],
        callback: Callable[["StandingCall", Delivery], None],
    ):
        self._transport = transport
        self._endpoint = endpoint
        self._params = dict(params)
        self._callback = callback
        self._subscription: Optional[Subscription] = None
        self._generation = 0
        self._call_count = 0
        self._cancelled = False
        self._lock = threading.RLock()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self._params)

    @property
    def call_count(self) -> int:
        return self._call_count

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_active(self) -> bool:
        return not self._cancelled and self._subscription is not None

    def call(self) -> bool:
        """
        呼び出しを（再）発行する。

        Returns:
            発行したか（キャンセル済みなら False）
        """
        with self._lock:
            if self._cancelled:
                return False
            self._close_subscription()
            self._generation += 1
            generation = self._generation
            self._call_count += 1

        subscription = self._transport.open(
            self._endpoint, dict(self._params),
            lambda delivery: self._deliver(generation, delivery),
        )

        with self._lock:
            # open 中の同期配信で cancel/再発行された場合は今回の購読を捨てる
            if self._cancelled or generation != self._generation:
                subscription.cancel()
                return True
            self._subscription = subscription
        return True

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            self._generation += 1
            self._close_subscription()

    def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.cancel()

    def _deliver(self, generation: int, delivery: Delivery) -> None:
        with self._lock:
            if self._cancelled or generation != self._generation:
                return
        self._callback(self, delivery)
