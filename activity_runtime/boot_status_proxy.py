"""
boot_status_proxy.py - "bootup" Requirement の提供者

System Manager の getBootStatus を subscribe し、その push を
1) "bootup" Requirement の一括充足（boot 1サイクルにつき1回）
2) スケジューラの UI サブシステム enable/disable
に変換する。

状態遷移:
    disabled --enable()--> delivering <--> retry_wait
    恒久的失敗 / disable() --> disabled

- 一時的失敗: retry_delay 秒後に同じ呼び出しを再発行（回数上限・バックオフなし）
- 恒久的失敗: 購読を捨てて停止。次の enable() まで boot latch は動かない
- finished=true: 未 latch なら待機中の Requirement を全て充足し latch
- finished=false: latch を解除し新しい boot サイクルを始める
  （System Manager 自体の再起動に追従するため）

latch 中に生成された "bootup" Requirement はその場で充足済みになる。
"""

from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, Optional

from .diagnostics import Diagnostics
from .errors import REQ_INVALID_VALUE, REQ_UNKNOWN, format_error
from .logging_utils import CorrelationContext, get_structured_logger
from .metrics import (
    BOOT_SATISFACTION_PASSES,
    SUBSCRIPTION_CALLS,
    SUBSCRIPTION_PERMANENT_FAILURES,
    SUBSCRIPTION_RETRIES,
    MetricsCollector,
    get_metrics_collector,
)
from .requirements import (
    ListedRequirement,
    MasterRequirementManager,
    RequirementCore,
    RequirementList,
    RequirementManager,
)
from .standing_call import Delivery, StandingCall, Transport
from .status_bus import BOOT_STATUS_ENDPOINT
from .types import Activity, JsonDict, SchedulerHooks


BOOTUP_REQUIREMENT = "bootup"

# 一時的失敗からの再購読までの待ち時間（秒）
RETRY_DELAY = 0.25

# UI 依存 Activity を示すスケジューラのサブシステムタグ
UI_ENABLE = "ui"

STATE_DISABLED = "disabled"
STATE_DELIVERING = "delivering"
STATE_RETRY_WAIT = "retry_wait"

TimerFactory = Callable[..., Any]

logger = get_structured_logger("activitymanager.systemmanagerproxy")


def _response_json(response: Dict[str, Any]) -> str:
    return json.dumps(response, default=str, sort_keys=True)


class BootStatusProxy(RequirementManager):
    """getBootStatus の購読と "bootup" Requirement の latch を管理する"""

    def __init__(
        self,
        transport: Transport,
        scheduler: SchedulerHooks,
        *,
        endpoint: str = BOOT_STATUS_ENDPOINT,
        retry_delay: float = RETRY_DELAY,
        ui_tag: str = UI_ENABLE,
        timer_factory: TimerFactory = threading.Timer,
        diagnostics: Optional[Diagnostics] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Args:
            transport: getBootStatus を購読するトランスポート
            scheduler: enable_subsystem/disable_subsystem を持つスケジューラ
            endpoint: 購読先 URI
            retry_delay: 一時的失敗後の再発行までの秒数
            ui_tag: スケジューラに渡すサブシステムタグ
            timer_factory: threading.Timer 互換（テストで差し替える）
            diagnostics: 失敗・latch の記録先（任意）
            metrics: 省略時はプロセス共有の MetricsCollector
        """
        self._transport = transport
        self._scheduler = scheduler
        self._endpoint = endpoint
        self._retry_delay = retry_delay
        self._ui_tag = ui_tag
        self._timer_factory = timer_factory
        self._diagnostics = diagnostics
        self._metrics = metrics

        self._boot_core = RequirementCore(BOOTUP_REQUIREMENT, True)
        self._boot_requirements = RequirementList()
        self._boot_latched = False
        self._boot_status: Optional[StandingCall] = None
        self._retry_timer: Optional[Any] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # RequirementManager
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "SystemManagerProxy"

    def instantiate_requirement(self, activity: Activity, name: str, value: Any) -> ListedRequirement:
        """
        "bootup" Requirement を生成する。

        Raises:
            ActivityManagerError: 未知の名前（REQ_UNKNOWN）、
                または値が真偽値 true 以外（REQ_INVALID_VALUE）
        """
        logger.debug("Instantiating [Requirement %s] for [Activity %s]", name, activity.id)

        if name != BOOTUP_REQUIREMENT:
            logger.error(
                "does not know how to instantiate Requirement",
                msgid="SM_UNKNOWN_REQ", manager=self.name, req=name, activity_id=activity.id,
            )
            raise format_error(
                REQ_UNKNOWN, requirement=name, manager=self.name, activity_id=activity.id,
                details={"manager": self.name, "requirement": name, "activity_id": activity.id},
            )

        if value is not True:
            raise format_error(
                REQ_INVALID_VALUE, requirement=name, value=value,
                details={"manager": self.name, "activity_id": activity.id},
            )

        with self._lock:
            requirement = ListedRequirement(activity, self._boot_core)
            if self._boot_core.is_met:
                requirement.met()
            else:
                self._boot_requirements.append(requirement)
            return requirement

    def register_requirements(self, master: MasterRequirementManager) -> None:
        logger.debug("Registering requirements")
        master.register_requirement(BOOTUP_REQUIREMENT, self)

    def unregister_requirements(self, master: MasterRequirementManager) -> None:
        logger.debug("Unregistering requirements")
        master.unregister_requirement(BOOTUP_REQUIREMENT, self)

    # ------------------------------------------------------------------
    # 購読ライフサイクル
    # ------------------------------------------------------------------

    def enable(self) -> None:
        """getBootStatus の subscribe を新しく発行する。"""
        with self._lock:
            logger.debug("Enabling System Manager Proxy")
            self._discard_subscription()
            self._boot_status = StandingCall(
                self._transport, self._endpoint, {"subscribe": True}, self._boot_status_update,
            )
            self._issue(self._boot_status)

    def disable(self) -> None:
        """購読と保留中の再発行タイマーを破棄する。"""
        with self._lock:
            logger.debug("Disabling System Manager Proxy")
            self._discard_subscription()

    def _discard_subscription(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        if self._boot_status is not None:
            self._boot_status.cancel()
            self._boot_status = None

    def _issue(self, call: StandingCall) -> None:
        self._collector().increment(SUBSCRIPTION_CALLS)
        self._diag("bootstatus.subscribe", "success", meta={"endpoint": self._endpoint})
        call.call()

    def _retry(self, call: StandingCall) -> None:
        with self._lock:
            if self._retry_timer is None or call is not self._boot_status or call.is_cancelled:
                return
            self._retry_timer = None
            self._issue(call)

    # ------------------------------------------------------------------
    # 配信処理
    # ------------------------------------------------------------------

    def _boot_status_update(self, call: StandingCall, delivery: Delivery) -> None:
        """
        getBootStatus の応答::

            {"finished": <bool>, "firstUse": <bool>}
        """
        with self._lock, CorrelationContext():
            if call is not self._boot_status:
                return

            logger.debug("Boot status update message: %s", _response_json(delivery.response))

            if not delivery.is_ok:
                self._handle_failure(call, delivery)
                return

            finished = delivery.response.get("finished")
            if not isinstance(finished, bool):
                logger.warning(
                    "Bootup status not returned by System Manager: %s",
                    _response_json(delivery.response), msgid="SM_BOOTSTS_NOTRETURNED",
                )
                return

            if finished:
                if not self._boot_latched:
                    self._satisfy_boot_requirements()
                self._scheduler.enable_subsystem(self._ui_tag)
            else:
                if self._boot_latched:
                    # 新しい boot サイクル: 以降の finished=true で再度充足する
                    self._boot_latched = False
                    self._boot_core = RequirementCore(BOOTUP_REQUIREMENT, True)
                    self._diag("bootstatus.unlatch", "success")
                self._scheduler.disable_subsystem(self._ui_tag)

    def _handle_failure(self, call: StandingCall, delivery: Delivery) -> None:
        if delivery.is_permanent_failure:
            logger.warning(
                "Subscription to System Manager experienced an uncorrectable failure: %s",
                _response_json(delivery.response), msgid="SM_BOOTSTS_UPDATE_FAIL",
            )
            self._collector().increment(SUBSCRIPTION_PERMANENT_FAILURES)
            self._diag("bootstatus.update", "failed", error=delivery.response or "permanent failure")
            self._discard_subscription()
            return

        logger.warning(
            "Subscription to System Manager failed, retrying: %s",
            _response_json(delivery.response), msgid="SM_BOOTSTS_UPDATE_RETRY",
        )
        self._collector().increment(SUBSCRIPTION_RETRIES)
        self._diag("bootstatus.update", "retrying", meta={"delay": self._retry_delay})

        if self._retry_timer is not None:
            self._retry_timer.cancel()
        timer = self._timer_factory(self._retry_delay, self._retry, args=(call,))
        timer.daemon = True
        self._retry_timer = timer
        timer.start()

    def _satisfy_boot_requirements(self) -> None:
        """待機中の "bootup" を一度だけ充足し latch する。"""
        pending = self._boot_requirements.snapshot()
        for requirement in pending:
            requirement.met()
            self._boot_requirements.remove(requirement)

        self._boot_core.met()
        self._boot_latched = True
        self._collector().increment(BOOT_SATISFACTION_PASSES)
        self._diag("bootstatus.latch", "success", meta={"satisfied": len(pending)})
        logger.info("Boot finished, satisfied %d requirement(s)", len(pending))

    # ------------------------------------------------------------------
    # 状態参照
    # ------------------------------------------------------------------

    @property
    def is_latched(self) -> bool:
        return self._boot_latched

    @property
    def state(self) -> str:
        with self._lock:
            if self._boot_status is None:
                return STATE_DISABLED
            if self._retry_timer is not None:
                return STATE_RETRY_WAIT
            return STATE_DELIVERING

    @property
    def pending_requirements(self):
        return self._boot_requirements.snapshot()

    def status(self) -> JsonDict:
        with self._lock:
            return {
                "manager": self.name,
                "endpoint": self._endpoint,
                "state": self.state,
                "latched": self._boot_latched,
                "pending": len(self._boot_requirements),
                "calls": self._boot_status.call_count if self._boot_status is not None else 0,
            }

    def _collector(self) -> MetricsCollector:
        return self._metrics if self._metrics is not None else get_metrics_collector()

    def _diag(self, step_id: str, status: str, error: Any = None, meta: Any = None) -> None:
        if self._diagnostics is not None:
            self._diagnostics.record_step(
                phase="bootstatus", step_id=step_id, handler=self.name,
                status=status, error=error, meta=meta,
            )
