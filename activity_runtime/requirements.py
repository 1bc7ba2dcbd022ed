"""
requirements.py - Requirement の共通部品

- RequirementCore: 1つの論理条件（例: "bootup"）。未充足 → 充足 の一方向のみ。
  リセットはインスタンスを捨てて作り直すことで表現する。
- ListedRequirement: Activity 1つと RequirementCore 1つの結び付き。
  RequirementList に載り、同じ条件の待ち手をまとめて通知できる。
- RequirementManager: Requirement 名の提供者（プロキシ）の基底クラス。
- MasterRequirementManager: 名前 → 提供者 のレジストリ。
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional

from .errors import REQ_ALREADY_REGISTERED, REQ_UNKNOWN, format_error
from .logging_utils import get_structured_logger
from .types import Activity, JsonDict


logger = get_structured_logger("activitymanager.requirement")


class RequirementCore:
    """条件そのものの状態。met() は一度だけ効く。"""

    def __init__(self, name: str, value: Any = True):
        self._name = name
        self._value = value
        self._met = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> Any:
        return self._value

    @property
    def is_met(self) -> bool:
        return self._met

    def met(self) -> None:
        self._met = True

    def __repr__(self) -> str:
        return f"RequirementCore({self._name!r}, met={self._met})"


class ListedRequirement:
    """Activity ごとの Requirement。一覧から外れるまで通知対象になる"""

    def __init__(self, activity: Activity, core: RequirementCore):
        self._activity = activity
        self._core = core
        self._met = False
        self._list: Optional["RequirementList"] = None

    @property
    def activity(self) -> Activity:
        return self._activity

    @property
    def core(self) -> RequirementCore:
        return self._core

    @property
    def name(self) -> str:
        return self._core.name

    @property
    def is_met(self) -> bool:
        return self._met

    @property
    def is_listed(self) -> bool:
        return self._list is not None

    def met(self) -> bool:
        """
        充足済みにして Activity に通知する。

        Returns:
            今回の呼び出しで未充足 → 充足 に遷移したか
        """
        if self._met:
            return False
        self._met = True
        logger.debug("[Requirement %s] met for [Activity %s]", self.name, self._activity.id)
        self._activity.requirement_met(self)
        return True

    def release(self) -> None:
        """所属する一覧から外す（Activity 終了時）。"""
        if self._list is not None:
            self._list.remove(self)

    def to_dict(self) -> JsonDict:
        return {"name": self.name, "value": self._core.value, "met": self._met}

    def __repr__(self) -> str:
        return f"ListedRequirement({self.name!r}, activity={self._activity.id}, met={self._met})"


class RequirementList:
    """ListedRequirement の一覧。1つの要素は同時に1つの一覧にしか載らない"""

    def __init__(self) -> None:
        self._items: List[ListedRequirement] = []

    def append(self, requirement: ListedRequirement) -> None:
        requirement.release()
        self._items.append(requirement)
        requirement._list = self

    def remove(self, requirement: ListedRequirement) -> None:
        if requirement._list is self:
            self._items = [item for item in self._items if item is not requirement]
            requirement._list = None

    def snapshot(self) -> List[ListedRequirement]:
        return list(self._items)

    def __iter__(self) -> Iterator[ListedRequirement]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, requirement: object) -> bool:
        return any(item is requirement for item in self._items)


class RequirementManager:
    """
    Requirement 名を提供するマネージャの基底クラス。

    サブクラスは name / instantiate_requirement / register_requirements /
    unregister_requirements を実装する。enable/disable は任意。
    """

    @property
    def name(self) -> str:
        raise NotImplementedError

    def instantiate_requirement(self, activity: Activity, name: str, value: Any) -> ListedRequirement:
        raise NotImplementedError

    def register_requirements(self, master: "MasterRequirementManager") -> None:
        raise NotImplementedError

    def unregister_requirements(self, master: "MasterRequirementManager") -> None:
        raise NotImplementedError

    def enable(self) -> None:
        pass

    def disable(self) -> None:
        pass


class MasterRequirementManager(RequirementManager):
    """Requirement 名 → 提供者 のレジストリ（スレッドセーフ）"""

    def __init__(self) -> None:
        self._providers: Dict[str, RequirementManager] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "MasterRequirementManager"

    def register_requirement(self, name: str, provider: RequirementManager) -> None:
        with self._lock:
            existing = self._providers.get(name)
            if existing is not None and existing is not provider:
                raise format_error(REQ_ALREADY_REGISTERED, requirement=name, manager=existing.name)
            self._providers[name] = provider
        logger.debug("[Requirement %s] provided by [Manager %s]", name, provider.name)

    def unregister_requirement(self, name: str, provider: RequirementManager) -> bool:
        with self._lock:
            if self._providers.get(name) is not provider:
                return False
            del self._providers[name]
        logger.debug("[Requirement %s] no longer provided by [Manager %s]", name, provider.name)
        return True

    def provider_for(self, name: str) -> Optional[RequirementManager]:
        with self._lock:
            return self._providers.get(name)

    def registered_names(self) -> List[str]:
        with self._lock:
            return sorted(self._providers)

    def instantiate_requirement(self, activity: Activity, name: str, value: Any) -> ListedRequirement:
        """提供者に生成を委譲する。提供者がいなければ REQ_UNKNOWN。"""
        provider = self.provider_for(name)
        if provider is None:
            logger.error(
                "does not know how to instantiate Requirement",
                msgid="MASTER_UNKNOWN_REQ", manager=self.name, req=name, activity_id=activity.id,
            )
            raise format_error(
                REQ_UNKNOWN, requirement=name, manager=self.name, activity_id=activity.id,
                details={"manager": self.name, "requirement": name, "activity_id": activity.id},
            )
        return provider.instantiate_requirement(activity, name, value)

    def register_requirements(self, master: "MasterRequirementManager") -> None:
        pass

    def unregister_requirements(self, master: "MasterRequirementManager") -> None:
        pass

    def enable(self) -> None:
        with self._lock:
            providers = list(dict.fromkeys(self._providers.values()))
        for provider in providers:
            provider.enable()

    def disable(self) -> None:
        with self._lock:
            providers = list(dict.fromkeys(self._providers.values()))
        for provider in providers:
            provider.disable()
