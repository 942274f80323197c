"""Pytest fixtures and utilities for kaspastage tests."""

import asyncio
import tempfile
from collections import Counter
from pathlib import Path
from typing import Generator

import pytest

from kaspastage.config import EngineSettings
from kaspastage.data_loader import clear_cache, load_registry
from kaspastage.errors import RuntimeDriverError
from kaspastage.orchestrator import (
    FallbackStrategy,
    HealthStatus,
    Profile,
    ProfileRegistry,
    ResourceCost,
    ServiceDescriptor,
    ServiceHandle,
)


@pytest.fixture(autouse=True)
def fresh_catalog() -> Generator[None, None, None]:
    """Reload the bundled catalog for every test."""
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def state_env(temp_dir: Path, monkeypatch) -> Path:
    """Point config and state paths at the temp directory."""
    state_dir = temp_dir / "state"
    monkeypatch.setenv("KASPASTAGE_STATE_DIR", str(state_dir))
    monkeypatch.setenv("KASPASTAGE_CONFIG", str(temp_dir / "config.json"))
    monkeypatch.setenv("KASPASTAGE_PROJECT_DIR", str(temp_dir))
    return state_dir


@pytest.fixture
def registry() -> ProfileRegistry:
    """The bundled profile catalog."""
    return load_registry()


@pytest.fixture
def fast_settings() -> EngineSettings:
    """Engine settings with no backoff delay and short timeouts."""
    return EngineSettings(
        health_check_attempts=3,
        health_check_base_delay=0,
        health_check_max_delay=0,
        service_timeout=5,
        run_timeout=30,
        max_workers=4,
    )


def _service(spec) -> ServiceDescriptor:
    if isinstance(spec, ServiceDescriptor):
        return spec
    name, required, tier, *rest = spec
    depends_on = tuple(rest[0]) if rest else ()
    cost = rest[1] if len(rest) > 1 else ResourceCost(1, 1, 1)
    return ServiceDescriptor(
        name=name, required=required, tier=tier, depends_on=depends_on, resources=cost
    )


@pytest.fixture
def make_profile():
    """Factory for Profile records.

    Services are ``(name, required, tier[, depends_on[, ResourceCost]])`` tuples.
    """

    def _make(profile_id: str, services=(), category: str = "optional", **kwargs) -> Profile:
        described = tuple(_service(s) for s in services)
        if "resources" not in kwargs:
            total = ResourceCost()
            for s in described:
                total = total + s.resources
            kwargs["resources"] = total
        return Profile(
            id=profile_id,
            name=profile_id.title(),
            description=f"{profile_id} profile",
            category=category,
            services=described,
            **kwargs,
        )

    return _make


@pytest.fixture
def shared_db_registry(make_profile) -> ProfileRegistry:
    """Two indexer profiles sharing one database service."""
    db_cost = ResourceCost(cpu=2, memory=4, disk=50)
    return ProfileRegistry(
        [
            make_profile("node", [("node", True, 1, (), ResourceCost(2, 4, 100))]),
            make_profile(
                "indexer-a",
                [
                    ("shared-db", True, 2, (), db_cost),
                    ("indexer-a", True, 2, ("shared-db",), ResourceCost(1, 1, 10)),
                ],
                optional_dependencies=("node",),
                fallback=FallbackStrategy(
                    id="public-node",
                    message="use the public node",
                    config_overrides={"NODE_URL": "https://public.example"},
                ),
            ),
            make_profile(
                "indexer-b",
                [
                    ("shared-db", True, 2, (), db_cost),
                    ("indexer-b", True, 2, ("shared-db",), ResourceCost(1, 2, 20)),
                ],
            ),
        ]
    )


class FakeRuntime:
    """In-memory runtime driver with scripted health sequences.

    ``health`` maps a service name to the statuses returned by successive
    probes; the last status repeats. Services not listed are healthy.
    """

    def __init__(
        self,
        health: dict[str, list[HealthStatus]] | None = None,
        launch_errors: set[str] | None = None,
        stop_errors: set[str] | None = None,
        launch_delay: float = 0.0,
    ):
        self.health = health or {}
        self.launch_errors = launch_errors or set()
        self.stop_errors = stop_errors or set()
        self.launch_delay = launch_delay
        self.launched: list[str] = []
        self.stopped: list[str] = []
        self.configs: dict[str, dict[str, str]] = {}
        self.probes: Counter = Counter()
        self.active = 0
        self.max_active = 0

    async def launch(self, service, configuration):
        self.launched.append(service.name)
        self.configs[service.name] = dict(configuration)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.launch_delay:
                await asyncio.sleep(self.launch_delay)
        finally:
            self.active -= 1
        if service.name in self.launch_errors:
            raise RuntimeDriverError(service.name, "launch refused")
        return ServiceHandle(name=service.name, profile=service.profile, ref=service.name)

    async def health_status(self, handle):
        sequence = self.health.get(handle.name, [HealthStatus.HEALTHY])
        index = min(self.probes[handle.name], len(sequence) - 1)
        self.probes[handle.name] += 1
        return sequence[index]

    async def stop(self, handle):
        if handle.name in self.stop_errors:
            raise RuntimeDriverError(handle.name, "stop refused")
        self.stopped.append(handle.name)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def runtime_factory():
    """Build a FakeRuntime with scripted behaviour."""
    return FakeRuntime
