"""Container runtime driver interface and the docker compose implementation."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from ..errors import RuntimeDriverError
from ..execution import DEFAULT_TIMEOUT, LAUNCH_TIMEOUT, STOP_TIMEOUT, run_command_async
from .models import PlannedService

_logging = logging.getLogger(__name__)


class HealthStatus(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ServiceHandle:
    name: str
    profile: str
    ref: str | None = None


class RuntimeDriver(Protocol):
    """What the execution engine needs from a container runtime.

    Implementations raise RuntimeDriverError (or any exception) for failures;
    the engine records them against the service.
    """

    async def launch(
        self, service: PlannedService, configuration: dict[str, str]
    ) -> ServiceHandle: ...

    async def health_status(self, handle: ServiceHandle) -> HealthStatus: ...

    async def stop(self, handle: ServiceHandle) -> None: ...


_HEALTH_MAP = {
    "healthy": HealthStatus.HEALTHY,
    "running": HealthStatus.HEALTHY,
    "unhealthy": HealthStatus.UNHEALTHY,
    "exited": HealthStatus.UNHEALTHY,
    "dead": HealthStatus.UNHEALTHY,
}

_INSPECT_FORMAT = "{{if .State.Health}}{{.State.Health.Status}}{{else}}{{.State.Status}}{{end}}"


class ComposeRuntime:
    """Drive services through ``docker compose`` in a project directory.

    Configuration values are passed as environment variables so the compose
    file can substitute them.
    """

    def __init__(
        self,
        project_dir: Path,
        compose_file: str = "docker-compose.yml",
        docker: str = "docker",
    ):
        self.project_dir = project_dir
        self.compose_file = compose_file
        self.docker = docker

    def _compose(self, *args: str) -> list[str]:
        return [self.docker, "compose", "-f", self.compose_file, *args]

    async def launch(
        self, service: PlannedService, configuration: dict[str, str]
    ) -> ServiceHandle:
        output, rc = await run_command_async(
            self._compose("up", "-d", "--no-deps", service.name),
            timeout=LAUNCH_TIMEOUT,
            cwd=self.project_dir,
            env=configuration,
        )
        if rc != 0:
            raise RuntimeDriverError(service.name, output or f"exit code {rc}")
        return ServiceHandle(name=service.name, profile=service.profile, ref=service.name)

    async def health_status(self, handle: ServiceHandle) -> HealthStatus:
        output, rc = await run_command_async(
            [self.docker, "inspect", "--format", _INSPECT_FORMAT, handle.ref or handle.name],
            timeout=DEFAULT_TIMEOUT,
        )
        if rc != 0:
            _logging.debug(f"Inspect failed for {handle.name}: {output}")
            return HealthStatus.UNKNOWN
        return _HEALTH_MAP.get(output.strip().lower(), HealthStatus.UNKNOWN)

    async def stop(self, handle: ServiceHandle) -> None:
        output, rc = await run_command_async(
            self._compose("rm", "--stop", "--force", handle.name),
            timeout=STOP_TIMEOUT,
            cwd=self.project_dir,
        )
        if rc != 0:
            raise RuntimeDriverError(handle.name, output or f"exit code {rc}")


__all__ = ["HealthStatus", "ServiceHandle", "RuntimeDriver", "ComposeRuntime"]
