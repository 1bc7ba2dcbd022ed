"""
activity_runtime package

Activity スケジューラのリソースコンテナ割り当てと、
"bootup" Requirement を提供する boot status プロキシ。
"""

from .boot_status_proxy import BOOTUP_REQUIREMENT, BootStatusProxy
from .config import RuntimeConfig, load_config
from .container import ResourceContainer
from .container_manager import ContainerManager
from .diagnostics import Diagnostics
from .entities import BusEntity, EntityRegistry
from .errors import ActivityManagerError
from .metrics import MetricsCollector, get_metrics_collector
from .requirements import (
    ListedRequirement,
    MasterRequirementManager,
    RequirementCore,
    RequirementManager,
)
from .runtime import ActivityRuntime, SubsystemScheduler, get_runtime, initialize_runtime, reset_runtime
from .standing_call import Delivery, FailureKind, StandingCall
from .status_bus import BootStatusPublisher, BusTransport, StatusBus
from .types import ActivityPriority

__all__ = [
    "ActivityManagerError",
    "ActivityPriority",
    "ActivityRuntime",
    "BOOTUP_REQUIREMENT",
    "BootStatusProxy",
    "BootStatusPublisher",
    "BusEntity",
    "BusTransport",
    "ContainerManager",
    "Delivery",
    "Diagnostics",
    "EntityRegistry",
    "FailureKind",
    "ListedRequirement",
    "MasterRequirementManager",
    "MetricsCollector",
    "RequirementCore",
    "RequirementManager",
    "ResourceContainer",
    "RuntimeConfig",
    "StandingCall",
    "StatusBus",
    "SubsystemScheduler",
    "get_metrics_collector",
    "get_runtime",
    "initialize_runtime",
    "load_config",
    "reset_runtime",
]
