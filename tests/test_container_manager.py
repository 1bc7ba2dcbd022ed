"""
test_container_manager.py - ContainerManager ユニットテスト

テスト観点:
- get_container: 遅延生成 / 同一インスタンス
- map_container: 新規割り当て / 移動 / 同一コンテナでの no-op / pid の関連付け / 未知 id で無変更
- 優先度再計算: 旧コンテナ・新コンテナ、1呼び出しにつき1回、全 entity 確定後
- inform_entity_updated: 割り当てあり / なし
- enable / disable: 全コンテナへの配布、二重呼び出し
- info_to_dict: 構造、失敗の伝播
- メトリクス: 注入した MetricsCollector への記録
"""

from __future__ import annotations

import json
import unittest
from typing import List, Tuple

from activity_runtime.container import ResourceContainer
from activity_runtime.container_manager import ContainerManager
from activity_runtime.entities import EntityRegistry
from activity_runtime.errors import ActivityManagerError
from activity_runtime.metrics import (
    CONTAINERS,
    ENTITY_REASSIGNED,
    PRIORITY_UPDATES,
    MetricsCollector,
    get_metrics_collector,
)
from activity_runtime.types import ActivityPriority


class RecordingContainer(ResourceContainer):
    """update_priority / enable / disable の呼び出しを記録する"""

    def __init__(self, name, log):
        super().__init__(name)
        self.log = log
        self.enable_calls = 0
        self.disable_calls = 0

    def update_priority(self):
        self.log.append((self.name, sorted(e.name for e in self.entities)))
        return super().update_priority()

    def enable(self):
        self.enable_calls += 1
        super().enable()

    def disable(self):
        self.disable_calls += 1
        super().disable()


class RecordingManager(ContainerManager):
    def __init__(self, registry):
        super().__init__(registry)
        self.priority_log: List[Tuple[str, List[str]]] = []

    def create_container(self, name):
        return RecordingContainer(name, self.priority_log)

    def updates_for(self, name):
        return [members for cname, members in self.priority_log if cname == name]


class ContainerManagerTestBase(unittest.TestCase):
    def setUp(self):
        self.registry = EntityRegistry()
        for entity_id in ("com.example.a", "com.example.b", "com.example.c"):
            self.registry.register(entity_id)
        self.manager = RecordingManager(self.registry)

    def entity(self, entity_id):
        return self.registry.get_entity(entity_id)


# =========================================================================
# get_container
# =========================================================================


class TestGetContainer(ContainerManagerTestBase):

    def test_same_name_returns_same_instance(self):
        """同じ名前なら同じインスタンス"""
        first = self.manager.get_container("app")
        self.assertIs(first, self.manager.get_container("app"))

    def test_new_container_is_empty_and_disabled(self):
        """生成直後は空・無効・既定優先度"""
        container = self.manager.get_container("app")
        self.assertEqual(container.entities, [])
        self.assertEqual(container.processes, [])
        self.assertFalse(container.is_enabled)
        self.assertEqual(container.priority, ActivityPriority.LOWEST)

    def test_find_container_does_not_create(self):
        self.assertIsNone(self.manager.find_container("missing"))
        self.assertEqual(self.manager.info_to_dict()["containers"], [])


# =========================================================================
# map_container
# =========================================================================


class TestMapContainer(ContainerManagerTestBase):

    def test_new_entities_are_assigned(self):
        """未割り当ての entity はコンテナに追加される"""
        container = self.manager.map_container("app", ["com.example.a", "com.example.b"], 100)
        self.assertEqual(sorted(e.name for e in container.entities), ["com.example.a", "com.example.b"])
        self.assertIs(self.manager.container_for(self.entity("com.example.a")), container)
        self.assertEqual(container.processes, [100])

    def test_move_between_containers(self):
        """A → B への再マッピングで A から消え B に入る"""
        a = self.manager.map_container("A", ["com.example.a"], 1)
        b = self.manager.map_container("B", ["com.example.a"], 1)

        e = self.entity("com.example.a")
        self.assertFalse(a.has_entity(e))
        self.assertTrue(b.has_entity(e))
        self.assertIs(self.manager.container_for(e), b)
        # 両方のコンテナで、それぞれの呼び出し後に再計算されている
        self.assertEqual(self.manager.updates_for("A"), [["com.example.a"], []])
        self.assertEqual(self.manager.updates_for("B"), [["com.example.a"]])

    def test_priority_updated_once_after_all_entities(self):
        """対象コンテナの再計算は1回だけ、全 entity を追加した後"""
        self.manager.map_container("app", ["com.example.a", "com.example.b", "com.example.c"], 7)
        self.assertEqual(
            self.manager.updates_for("app"),
            [["com.example.a", "com.example.b", "com.example.c"]],
        )

    def test_remap_same_container_is_noop_for_membership(self):
        """既に同じコンテナにいる entity は動かさない"""
        self.manager.map_container("app", ["com.example.a"], 1)
        self.manager.map_container("app", ["com.example.a"], 2)

        container = self.manager.get_container("app")
        self.assertEqual([e.name for e in container.entities], ["com.example.a"])
        self.assertEqual(container.processes, [1, 2])
        self.assertEqual(self.manager.info_to_dict()["entityMap"], [{"com.example.a": "app"}])
        # 再計算は各呼び出しで1回ずつ
        self.assertEqual(len(self.manager.updates_for("app")), 2)

    def test_empty_container_is_kept(self):
        """entity を全て失ったコンテナは残り、プロセスも保持する"""
        self.manager.map_container("old", ["com.example.a"], 42)
        self.manager.map_container("new", ["com.example.a"], 43)

        old = self.manager.find_container("old")
        self.assertIsNotNone(old)
        self.assertEqual(old.entities, [])
        self.assertEqual(old.processes, [42])

    def test_last_mapping_wins(self):
        """各 entity は最後に自分を含めた呼び出しのコンテナに属する"""
        self.manager.map_container("A", ["com.example.a", "com.example.b"], 1)
        self.manager.map_container("B", ["com.example.b", "com.example.c"], 2)
        self.manager.map_container("C", ["com.example.a"], 3)

        entity_map = {}
        for pair in self.manager.info_to_dict()["entityMap"]:
            entity_map.update(pair)
        self.assertEqual(entity_map, {
            "com.example.a": "C",
            "com.example.b": "B",
            "com.example.c": "B",
        })
        for name in ("A", "B", "C"):
            container = self.manager.get_container(name)
            for e in container.entities:
                self.assertEqual(entity_map[e.name], name)

    def test_unknown_entity_raises(self):
        """未登録の bus id は契約違反"""
        with self.assertRaises(ActivityManagerError) as ctx:
            self.manager.map_container("app", ["com.example.missing"], 1)
        self.assertEqual(ctx.exception.code, "AMGR-ENT-001")

    def test_unknown_entity_in_batch_changes_nothing(self):
        """未知の bus id を含む呼び出しは既知の entity も動かさない"""
        self.entity("com.example.a").set_priority(ActivityPriority.HIGH)
        old = self.manager.map_container("old", ["com.example.a"], 1)
        log_before = list(self.manager.priority_log)

        with self.assertRaises(ActivityManagerError):
            self.manager.map_container("new", ["com.example.a", "com.example.missing"], 2)

        self.assertIsNone(self.manager.find_container("new"))
        self.assertIs(self.manager.container_for(self.entity("com.example.a")), old)
        self.assertEqual([e.name for e in old.entities], ["com.example.a"])
        self.assertEqual(old.priority, ActivityPriority.HIGH)
        self.assertEqual(old.processes, [1])
        self.assertEqual(self.manager.priority_log, log_before)

    def test_unmap_process(self):
        """プロセスを外しても entity の割り当ては残る"""
        container = self.manager.map_container("app", ["com.example.a"], 10)
        container.map_process(11)

        container.unmap_process(10)
        container.unmap_process(99)

        self.assertEqual(container.processes, [11])
        self.assertIs(self.manager.container_for(self.entity("com.example.a")), container)

    def test_priority_follows_entities(self):
        """移動元の優先度は下がり、移動先は entity の優先度になる"""
        self.entity("com.example.a").set_priority(ActivityPriority.HIGH)
        a = self.manager.map_container("A", ["com.example.a"], 1)
        self.assertEqual(a.priority, ActivityPriority.HIGH)

        b = self.manager.map_container("B", ["com.example.a"], 1)
        self.assertEqual(a.priority, ActivityPriority.LOWEST)
        self.assertEqual(b.priority, ActivityPriority.HIGH)


# =========================================================================
# inform_entity_updated
# =========================================================================


class TestInformEntityUpdated(ContainerManagerTestBase):

    def test_unmapped_entity_is_noop(self):
        """未割り当ての entity は何もしない（例外にならない）"""
        with self.assertLogs("activitymanager.resourcecontainermanager", level="DEBUG") as cm:
            self.manager.inform_entity_updated(self.entity("com.example.a"))
        self.assertEqual(self.manager.priority_log, [])
        self.assertTrue(any("No container currently mapped" in line for line in cm.output))

    def test_mapped_entity_recomputes_priority(self):
        self.manager.map_container("app", ["com.example.a"], 1)
        self.entity("com.example.a").set_priority(ActivityPriority.HIGHEST)

        self.manager.inform_entity_updated(self.entity("com.example.a"))

        self.assertEqual(len(self.manager.updates_for("app")), 2)
        self.assertEqual(self.manager.get_container("app").priority, ActivityPriority.HIGHEST)


# =========================================================================
# enable / disable
# =========================================================================


class TestEnableDisable(ContainerManagerTestBase):

    def setUp(self):
        super().setUp()
        self.containers = [self.manager.get_container(n) for n in ("x", "y", "z")]

    def test_enable_broadcasts_once_per_call(self):
        self.manager.enable()
        self.assertTrue(self.manager.is_enabled())
        for c in self.containers:
            self.assertEqual(c.enable_calls, 1)
            self.assertTrue(c.is_enabled)

    def test_enable_twice_keeps_state(self):
        """二重 enable はエラーにならず状態も変わらない"""
        self.manager.enable()
        self.manager.enable()
        self.assertTrue(self.manager.is_enabled())
        for c in self.containers:
            self.assertEqual(c.enable_calls, 2)
            self.assertTrue(c.is_enabled)

    def test_disable_twice_keeps_state(self):
        self.manager.enable()
        self.manager.disable()
        self.manager.disable()
        self.assertFalse(self.manager.is_enabled())
        for c in self.containers:
            self.assertEqual(c.disable_calls, 2)
            self.assertFalse(c.is_enabled)

    def test_container_created_after_enable_waits_for_next_broadcast(self):
        """enable 後に生成されたコンテナは次の enable まで無効"""
        self.manager.enable()
        late = self.manager.get_container("late")
        self.assertFalse(late.is_enabled)
        self.manager.enable()
        self.assertTrue(late.is_enabled)


# =========================================================================
# info_to_dict
# =========================================================================


class TestInfo(ContainerManagerTestBase):

    def test_report_structure(self):
        self.manager.map_container("app", ["com.example.a"], 11)
        report = self.manager.info_to_dict()

        self.assertEqual(set(report), {"containers", "entityMap"})
        self.assertEqual(report["entityMap"], [{"com.example.a": "app"}])
        self.assertEqual(report["containers"], [{
            "name": "app",
            "priority": "lowest",
            "enabled": False,
            "entities": ["com.example.a"],
            "processes": [11],
        }])
        self.assertEqual(json.loads(self.manager.info_to_json()), report)

    def test_container_serialization_failure_propagates(self):
        """コンテナの to_dict 失敗は握りつぶさない"""
        container = self.manager.get_container("broken")

        def explode():
            raise ValueError("cannot serialize")

        container.to_dict = explode
        with self.assertRaises(ValueError):
            self.manager.info_to_dict()


# =========================================================================
# メトリクスの注入
# =========================================================================


class TestInjectedMetrics(unittest.TestCase):

    def test_container_metrics_go_to_injected_collector(self):
        """注入した MetricsCollector にだけ記録し、共有の collector には書かない"""
        registry = EntityRegistry()
        registry.register("com.example.a")
        collector = MetricsCollector()
        manager = ContainerManager(registry, metrics=collector)

        manager.map_container("A", ["com.example.a"], 1)
        manager.map_container("B", ["com.example.a"], 1)

        self.assertEqual(collector.counter_value(ENTITY_REASSIGNED), 1)
        self.assertEqual(collector.counter_value(PRIORITY_UPDATES, {"container": "A"}), 2)
        self.assertEqual(collector.gauge_value(CONTAINERS), 2)
        self.assertEqual(get_metrics_collector().snapshot(), {"counters": {}, "gauges": {}})


if __name__ == "__main__":
    unittest.main()
