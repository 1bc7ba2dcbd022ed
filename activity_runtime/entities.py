"""
entities.py - Bus entity とそのレジストリ

BusEntity はバス上のピア（サービス/アプリ）1つを表す。Activity を所有し、
その中で最も高い優先度をコンテナへ寄与する。
同じ bus id に対して常に同じインスタンスを返すことで同一性を保証する。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from .errors import ENT_UNKNOWN, format_error
from .types import ActivityPriority


@dataclass(eq=False)
class BusEntity:
    """バス上のピア。eq=False なので比較・ハッシュはインスタンス同一性。"""

    name: str
    priority: ActivityPriority = ActivityPriority.NONE

    def set_priority(self, priority: ActivityPriority) -> None:
        self.priority = ActivityPriority(priority)

    def __repr__(self) -> str:
        return f"BusEntity({self.name!r}, priority={self.priority.label})"


class EntityRegistry:
    """bus id → BusEntity のレジストリ（スレッドセーフ）"""

    def __init__(self) -> None:
        self._entities: Dict[str, BusEntity] = {}
        self._lock = threading.Lock()

    def register(self, entity_id: str, priority: ActivityPriority = ActivityPriority.NONE) -> BusEntity:
        """entity を登録する。既に存在すれば既存インスタンスを返す。"""
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                entity = BusEntity(entity_id, ActivityPriority(priority))
                self._entities[entity_id] = entity
            return entity

    def get_entity(self, entity_id: str) -> BusEntity:
        """
        bus id を BusEntity に解決する。

        Raises:
            ActivityManagerError: 未登録の bus id（呼び出し側の契約違反）
        """
        with self._lock:
            entity = self._entities.get(entity_id)
        if entity is None:
            raise format_error(ENT_UNKNOWN, entity_id=entity_id, details={"entity_id": entity_id})
        return entity

    resolve = get_entity

    def find(self, entity_id: str) -> Optional[BusEntity]:
        with self._lock:
            return self._entities.get(entity_id)

    def entities(self) -> Iterable[BusEntity]:
        with self._lock:
            return list(self._entities.values())
