"""
container.py - リソースコンテナ

同じ論理クライアントに属する bus entity とプロセスをまとめ、
優先度をコンテナ単位で計算する。リソース制限は行わない（論理グループのみ）。
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Set

from .entities import BusEntity
from .logging_utils import get_structured_logger
from .metrics import PRIORITY_UPDATES, MetricsCollector, get_metrics_collector
from .types import ActivityPriority, JsonDict


PriorityPolicy = Callable[[Iterable[BusEntity]], ActivityPriority]

logger = get_structured_logger("activitymanager.resourcecontainer")


def highest_entity_priority(entities: Iterable[BusEntity]) -> ActivityPriority:
    """メンバー entity の中で最も高い優先度。空なら LOWEST。"""
    priorities = [entity.priority for entity in entities]
    if not priorities:
        return ActivityPriority.LOWEST
    return max(max(priorities), ActivityPriority.LOWEST)


class ResourceContainer:
    """
    名前付きのコンテナ。

    entity の所属はこのクラス単体では判断しない。割り当ての整合性
    （entity はちょうど1つのコンテナに属する）は ContainerManager が保証する。
    """

    def __init__(
        self,
        name: str,
        priority_policy: PriorityPolicy = highest_entity_priority,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._name = name
        self._priority_policy = priority_policy
        self._metrics = metrics
        self._entities: Dict[str, BusEntity] = {}
        self._processes: Set[int] = set()
        self._priority = ActivityPriority.LOWEST
        self._enabled = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> ActivityPriority:
        return self._priority

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def entities(self) -> List[BusEntity]:
        return list(self._entities.values())

    @property
    def processes(self) -> List[int]:
        return sorted(self._processes)

    def has_entity(self, entity: BusEntity) -> bool:
        return self._entities.get(entity.name) is entity

    def add_entity(self, entity: BusEntity) -> None:
        self._entities[entity.name] = entity

    def remove_entity(self, entity: BusEntity) -> None:
        if self._entities.get(entity.name) is entity:
            del self._entities[entity.name]

    def map_process(self, pid: int) -> None:
        logger.debug("Mapping pid %d into [Container %s]", pid, self._name)
        self._processes.add(int(pid))

    def unmap_process(self, pid: int) -> None:
        self._processes.discard(int(pid))

    def update_priority(self) -> ActivityPriority:
        """メンバー entity から優先度を再計算する。"""
        self._priority = ActivityPriority(self._priority_policy(self._entities.values()))
        self._collector().increment(PRIORITY_UPDATES, labels={"container": self._name})
        logger.debug("[Container %s] priority is now \"%s\"", self._name, self._priority.label)
        return self._priority

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self.enable()
        else:
            self.disable()

    def to_dict(self) -> JsonDict:
        return {
            "name": self._name,
            "priority": self._priority.label,
            "enabled": self._enabled,
            "entities": sorted(self._entities),
            "processes": self.processes,
        }

    def _collector(self) -> MetricsCollector:
        return self._metrics if self._metrics is not None else get_metrics_collector()

    def __repr__(self) -> str:
        return f"ResourceContainer({self._name!r})"
