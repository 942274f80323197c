"""Profile resolution, staged installation and checkpoint/rollback engine."""

from .checkpoints import Checkpoint, CheckpointManager, CheckpointStore
from .coordinator import Coordinator, PreparedInstall, RemovalResult
from .engine import (
    ExecutionEngine,
    RunContext,
    RunFailure,
    RunState,
    ServiceInstanceState,
    ServiceStatus,
)
from .events import (
    EventChannel,
    FallbackApplied,
    ProgressEvent,
    RunCancelled,
    RunCompleted,
    RunFailed,
    ServiceStatusChanged,
    StageCompleted,
    StageStarted,
)
from .models import (
    CapacityReport,
    FallbackStrategy,
    HostCapacity,
    InstallationPlan,
    PlannedService,
    Profile,
    Resolution,
    ResourceCost,
    ResourceRequirement,
    ServiceDescriptor,
    Stage,
    Template,
)
from .planning import (
    build_compose_descriptor,
    plan_installation,
    render_compose_yaml,
    render_plan,
)
from .registry import ProfileRegistry
from .resolution import resolve_profiles, validate_removal
from .resources import calculate_requirements, check_capacity
from .runtime import ComposeRuntime, HealthStatus, RuntimeDriver, ServiceHandle
from .state import InstallationState, StateStore

__all__ = [
    "Profile",
    "ServiceDescriptor",
    "ResourceCost",
    "HostCapacity",
    "FallbackStrategy",
    "Template",
    "Resolution",
    "ResourceRequirement",
    "CapacityReport",
    "PlannedService",
    "Stage",
    "InstallationPlan",
    "ProfileRegistry",
    "resolve_profiles",
    "validate_removal",
    "calculate_requirements",
    "check_capacity",
    "plan_installation",
    "render_plan",
    "build_compose_descriptor",
    "render_compose_yaml",
    "HealthStatus",
    "ServiceHandle",
    "RuntimeDriver",
    "ComposeRuntime",
    "ProgressEvent",
    "StageStarted",
    "ServiceStatusChanged",
    "FallbackApplied",
    "StageCompleted",
    "RunCompleted",
    "RunFailed",
    "RunCancelled",
    "EventChannel",
    "RunState",
    "ServiceStatus",
    "ServiceInstanceState",
    "RunFailure",
    "RunContext",
    "ExecutionEngine",
    "InstallationState",
    "StateStore",
    "Checkpoint",
    "CheckpointStore",
    "CheckpointManager",
    "Coordinator",
    "PreparedInstall",
    "RemovalResult",
]
