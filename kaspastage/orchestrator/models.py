"""Data models for profile resolution and installation planning."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ResourceCost:
    cpu: float = 0.0
    memory: float = 0.0
    disk: float = 0.0

    def __add__(self, other: "ResourceCost") -> "ResourceCost":
        return ResourceCost(
            cpu=self.cpu + other.cpu,
            memory=self.memory + other.memory,
            disk=self.disk + other.disk,
        )

    def __sub__(self, other: "ResourceCost") -> "ResourceCost":
        return ResourceCost(
            cpu=self.cpu - other.cpu,
            memory=self.memory - other.memory,
            disk=self.disk - other.disk,
        )

    def scaled(self, factor: int) -> "ResourceCost":
        return ResourceCost(
            cpu=self.cpu * factor, memory=self.memory * factor, disk=self.disk * factor
        )


@dataclass(frozen=True)
class HostCapacity:
    cpu: float
    memory: float
    disk: float


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    required: bool = True
    tier: int = 1
    description: str = ""
    depends_on: tuple[str, ...] = ()
    resources: ResourceCost = field(default_factory=ResourceCost)


@dataclass(frozen=True)
class FallbackStrategy:
    """Alternate target used by a profile when an optional local dependency
    is unavailable."""
    id: str
    message: str
    target: str | None = None
    config_overrides: dict[str, str] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    description: str
    category: str
    services: tuple[ServiceDescriptor, ...]
    requires: tuple[str, ...] = ()
    prerequisites: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    optional_dependencies: tuple[str, ...] = ()
    fallback: FallbackStrategy | None = None
    resources: ResourceCost = field(default_factory=ResourceCost)
    ports: tuple[int, ...] = ()
    required_config: tuple[str, ...] = ()
    optional_config: tuple[str, ...] = ()
    config_defaults: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def service_names(self) -> list[str]:
        return [s.name for s in self.services]

    @property
    def config_keys(self) -> tuple[str, ...]:
        return self.required_config + self.optional_config

    def get_service(self, name: str) -> ServiceDescriptor | None:
        return next((s for s in self.services if s.name == name), None)


@dataclass(frozen=True)
class Template:
    id: str
    name: str
    description: str
    profiles: tuple[str, ...]
    config: dict[str, str] = field(default_factory=dict, hash=False)


@dataclass
class Resolution:
    """Validated, possibly expanded profile set."""
    requested: list[str]
    profiles: list[str]
    fallbacks: dict[str, FallbackStrategy] = field(default_factory=dict)

    @property
    def added(self) -> list[str]:
        """Profiles pulled in transitively rather than selected."""
        return [p for p in self.profiles if p not in self.requested]


@dataclass
class ResourceRequirement:
    total: ResourceCost
    shared_services: dict[str, list[str]] = field(default_factory=dict)
    per_profile: dict[str, ResourceCost] = field(default_factory=dict)


@dataclass
class CapacityReport:
    requirement: ResourceRequirement
    capacity: HostCapacity | None
    sufficient: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlannedService:
    name: str
    profile: str
    tier: int
    required: bool
    depends_on: frozenset[str] = frozenset()
    owners: tuple[str, ...] = ()


@dataclass
class Stage:
    index: int
    services: list[PlannedService]

    @property
    def service_names(self) -> list[str]:
        return [s.name for s in self.services]


@dataclass
class InstallationPlan:
    profiles: list[str]
    stages: list[Stage]
    configuration: dict[str, str] = field(default_factory=dict)
    fallbacks: dict[str, FallbackStrategy] = field(default_factory=dict)
    preapplied_fallbacks: list[str] = field(default_factory=list)
    missing_configuration: dict[str, list[str]] = field(default_factory=dict)

    def is_ready(self) -> bool:
        return len(self.missing_configuration) == 0

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    def services(self) -> list[PlannedService]:
        return [s for stage in self.stages for s in stage.services]

    def stage_of(self, service_name: str) -> int | None:
        for stage in self.stages:
            if service_name in stage.service_names:
                return stage.index
        return None


__all__ = [
    "ResourceCost",
    "HostCapacity",
    "ServiceDescriptor",
    "FallbackStrategy",
    "Profile",
    "Template",
    "Resolution",
    "ResourceRequirement",
    "CapacityReport",
    "PlannedService",
    "Stage",
    "InstallationPlan",
]
