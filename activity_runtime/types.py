"""
types.py - 共通型定義

モジュール間で共有する列挙型・Protocol・型エイリアスを定義する。

主要コンポーネント:
- ActivityPriority: コンテナ優先度の列挙型
- Activity, SchedulerHooks: 外部コラボレータの Protocol
- JsonDict: JSON オブジェクトの型エイリアス

設計原則:
- stdlib のみに依存（循環参照を作らない）
"""

from __future__ import annotations

import enum
from typing import Any, Dict, Protocol


JsonDict = Dict[str, Any]
"""JSON オブジェクト（文字列キーの辞書）。"""


class ActivityPriority(enum.IntEnum):
    """Activity / コンテナの優先度。大きいほど優先。"""

    NONE = 0
    LOWEST = 1
    LOW = 2
    NORMAL = 3
    HIGH = 4
    HIGHEST = 5

    @property
    def label(self) -> str:
        """表示名（"normal" など）。"""
        return self.name.lower()


class Activity(Protocol):
    """Requirement を待つ Activity（スケジューラ側の型）。"""

    @property
    def id(self) -> int: ...

    def requirement_met(self, requirement: Any) -> None: ...


class SchedulerHooks(Protocol):
    """スケジューラのサブシステム単位 enable/disable フック。"""

    def enable_subsystem(self, tag: str) -> None: ...

    def disable_subsystem(self, tag: str) -> None: ...
