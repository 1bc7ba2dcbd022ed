"""
container_manager.py - プロセスグループ/bus entity → コンテナの割り当て

コンテナは名前で遅延生成され、このモジュールからは削除しない。
entity を持たなくなったコンテナにもまだ生きているプロセスが
残っている可能性があるため、簿記の副作用で片付けてはならない。

ストレージ:
- _containers: コンテナ本体の配列（アリーナ）
- _container_index: name → アリーナ index
- _entity_assignments: bus id → アリーナ index（現在の割り当てのみ）

"同じコンテナか" の判定は index の一致で行う。
"""

from __future__ import annotations

import json
import threading
from typing import Dict, Iterable, List, Optional

from .container import PriorityPolicy, ResourceContainer, highest_entity_priority
from .entities import BusEntity, EntityRegistry
from .logging_utils import get_structured_logger
from .metrics import CONTAINERS, ENTITY_REASSIGNED, MetricsCollector, get_metrics_collector
from .types import JsonDict


logger = get_structured_logger("activitymanager.resourcecontainermanager")


class ContainerManager:
    """コンテナのレジストリと entity 割り当て表を所有する"""

    def __init__(
        self,
        entity_registry: EntityRegistry,
        priority_policy: PriorityPolicy = highest_entity_priority,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._entity_registry = entity_registry
        self._priority_policy = priority_policy
        self._metrics = metrics
        self._containers: List[ResourceContainer] = []
        self._container_index: Dict[str, int] = {}
        self._entities: Dict[str, BusEntity] = {}
        self._entity_assignments: Dict[str, int] = {}
        self._enabled = False
        self._lock = threading.RLock()

    def create_container(self, name: str) -> ResourceContainer:
        """新しいコンテナを生成する（サブクラスで差し替え可能）。"""
        return ResourceContainer(name, self._priority_policy, self._metrics)

    def _lookup_index(self, name: str) -> int:
        index = self._container_index.get(name)
        if index is not None:
            return index

        logger.debug("Allocating new container for [Container %s]", name)
        self._containers.append(self.create_container(name))
        index = len(self._containers) - 1
        self._container_index[name] = index
        self._collector().set_gauge(CONTAINERS, len(self._containers))
        return index

    def get_container(self, name: str) -> ResourceContainer:
        """
        名前でコンテナを取得する。なければ生成して登録する。

        生成直後のコンテナは無効状態。マネージャの enable 状態は
        自動では引き継がない（次の enable()/disable() で揃う）。
        """
        with self._lock:
            logger.debug("Looking up [Container %s]", name)
            return self._containers[self._lookup_index(name)]

    def find_container(self, name: str) -> Optional[ResourceContainer]:
        with self._lock:
            index = self._container_index.get(name)
            return None if index is None else self._containers[index]

    def map_container(self, name: str, entity_ids: Iterable[str], pid: int) -> ResourceContainer:
        """
        pid と bus entity 群を name のコンテナに関連付ける。

        ソフトウェア更新でプロセスグループ名だけが変わり、entity が
        同時には移らないことがある。古い割り当ては無効化せず、
        明示的にこのコンテナを指定された entity だけを移動する。

        全ての bus id を先に解決し、1つでも未知なら何も変更しない。

        Raises:
            ActivityManagerError: 未知の bus id（entity は事前登録が必要）
        """
        entities = [self._entity_registry.get_entity(entity_id) for entity_id in entity_ids]

        with self._lock:
            logger.debug("Mapping pid %d into [Container %s]", pid, name)
            target = self._lookup_index(name)
            container = self._containers[target]

            for entity in entities:
                current = self._entity_assignments.get(entity.name)

                if current is None:
                    container.add_entity(entity)
                elif current != target:
                    # 旧コンテナから外し、寄与がなくなった分の優先度を再計算
                    previous = self._containers[current]
                    previous.remove_entity(entity)
                    previous.update_priority()
                    container.add_entity(entity)
                    logger.debug(
                        "[BusId %s] moved from [Container %s] to [Container %s]",
                        entity.name, previous.name, name,
                    )
                    self._collector().increment(ENTITY_REASSIGNED)
                else:
                    continue

                self._entities[entity.name] = entity
                self._entity_assignments[entity.name] = target

            # entity は既に存在し Activity を持っている場合もある
            container.update_priority()
            container.map_process(pid)
            return container

    def inform_entity_updated(self, entity: BusEntity) -> None:
        """entity の Activity が変わったときに所属コンテナの優先度を再計算する。"""
        with self._lock:
            logger.debug("[BusId %s] has been updated", entity.name)
            index = self._entity_assignments.get(entity.name)
            if index is None or self._entities.get(entity.name) is not entity:
                logger.debug("No container currently mapped for [BusId %s]", entity.name)
                return

            container = self._containers[index]
            priority = container.update_priority()
            logger.debug("[BusId %s] priority is now \"%s\"", entity.name, priority.label)

    def container_for(self, entity: BusEntity) -> Optional[ResourceContainer]:
        """entity の現在のコンテナ（未割り当てなら None）。"""
        with self._lock:
            index = self._entity_assignments.get(entity.name)
            if index is None or self._entities.get(entity.name) is not entity:
                return None
            return self._containers[index]

    def enable(self) -> None:
        """全コンテナへ enable を配る。既に有効でも配り直す（新規コンテナを揃える）。"""
        with self._lock:
            if self._enabled:
                logger.debug("Container Manager already enabled")
            logger.debug("Enabling Container Manager")
            self._enabled = True
            for container in self._containers:
                container.set_enabled(True)

    def disable(self) -> None:
        with self._lock:
            if not self._enabled:
                logger.debug("Container Manager already disabled")
            logger.debug("Disabling Container Manager")
            self._enabled = False
            for container in self._containers:
                container.set_enabled(False)

    def is_enabled(self) -> bool:
        return self._enabled

    def info_to_dict(self) -> JsonDict:
        """
        診断用のスナップショット::

            {"containers": [<container.to_dict()>, ...],
             "entityMap": [{"<entity>": "<container>"}, ...]}

        コンテナ側の to_dict() が失敗した場合はそのまま伝播する。
        """
        with self._lock:
            containers = [container.to_dict() for container in self._containers]
            entity_map = [
                {entity_name: self._containers[index].name}
                for entity_name, index in self._entity_assignments.items()
            ]
            return {"containers": containers, "entityMap": entity_map}

    def info_to_json(self) -> str:
        return json.dumps(self.info_to_dict())

    def _collector(self) -> MetricsCollector:
        return self._metrics if self._metrics is not None else get_metrics_collector()
