"""
diagnostics.py - サブスクリプション/コンテナ操作の結果集約(fail-softの"見える化")

配信失敗は呼び出し元に例外として返さないため、ここに記録して
/api/diagnostics から確認できるようにする。スレッドセーフ、件数上限付き。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, List, Literal, Optional


Status = Literal["success", "failed", "retrying", "disabled", "unknown"]

_STATUSES = ("success", "failed", "retrying", "disabled", "unknown")


def _now_ts() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Diagnostics:
    """診断イベントを集約する（スレッドセーフ、古いものから捨てる）"""

    events: List[Dict[str, Any]] = field(default_factory=list)
    started_at: str = field(default_factory=_now_ts)
    _lock: RLock = field(default_factory=RLock)
    MAX_EVENTS: int = field(default=1000)

    def _normalize_error(self, error: Any) -> Optional[Dict[str, Any]]:
        if error is None:
            return None
        if isinstance(error, dict):
            return {"type": error.get("type", "Error"), "message": error.get("message", "")}
        if isinstance(error, BaseException):
            return {"type": type(error).__name__, "message": str(error)}
        return {"type": "Error", "message": str(error)}

    def record_step(self, *, phase: str, step_id: str, handler: str, status: str,
                    error: Any = None, meta: Optional[Dict[str, Any]] = None) -> None:
        """標準形で1イベントを記録する"""
        event = {
            "ts": _now_ts(),
            "phase": phase,
            "step_id": step_id,
            "handler": handler,
            "status": status if status in _STATUSES else "unknown",
            "error": self._normalize_error(error),
            "meta": dict(meta or {}),
        }
        with self._lock:
            self.events.append(event)
            if len(self.events) > self.MAX_EVENTS:
                del self.events[: len(self.events) - self.MAX_EVENTS]

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            counts: Dict[str, int] = {}
            last_failure: Optional[Dict[str, Any]] = None
            for ev in self.events:
                counts[ev["status"]] = counts.get(ev["status"], 0) + 1
                if ev["status"] == "failed":
                    last_failure = ev
            return {"counts": counts, "last_failure": last_failure}

    def as_dict(self) -> Dict[str, Any]:
        """API返却用の辞書形式"""
        with self._lock:
            return {
                "started_at": self.started_at,
                "event_count": len(self.events),
                "events": list(self.events),
                "summary": self.summary(),
            }
