"""Stage-by-stage execution of an installation plan against a container runtime.

Services within a stage are launched concurrently (bounded by
``EngineSettings.max_workers``) and polled for health with capped
exponential backoff. A failed service either has its dependents switched to
a fallback, or fails the run. Execution-time errors never escape
``ExecutionEngine.run``; they end the run in a terminal state and are
reported as the final progress event.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from ..config import EngineSettings
from ..errors import OrchestratorError, StopFailed
from .events import (
    EventChannel,
    EventFactory,
    FallbackApplied,
    ProgressEvent,
    RunCancelled,
    RunCompleted,
    RunFailed,
    ServiceStatusChanged,
    StageCompleted,
    StageStarted,
)
from .models import InstallationPlan, PlannedService
from .registry import ProfileRegistry
from .resolution import hard_dependents
from .runtime import HealthStatus, RuntimeDriver, ServiceHandle

_logging = logging.getLogger(__name__)


class RunState(Enum):
    PLANNED = "planned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunState.PLANNED, RunState.RUNNING)


class ServiceStatus(Enum):
    PENDING = "pending"
    STARTING = "starting"
    HEALTH_CHECKING = "health_checking"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    FAILED = "failed"

    @property
    def is_failure(self) -> bool:
        return self in (ServiceStatus.UNHEALTHY, ServiceStatus.FAILED)


@dataclass
class ServiceInstanceState:
    name: str
    profile: str
    status: ServiceStatus = ServiceStatus.PENDING
    last_error: str | None = None
    fallback_applied: bool = False
    attempts: int = 0
    handle: ServiceHandle | None = None


@dataclass
class RunFailure:
    error_kind: str
    message: str
    internal: bool = False
    service: str | None = None


@dataclass
class RunContext:
    """Everything observable about one installation run.

    Owned by the engine while the run is active; anything that needs to watch
    progress holds a reference to this object rather than shared globals.
    """
    run_id: str
    plan: InstallationPlan
    configuration: dict[str, str]
    channel: EventChannel | None = None
    state: RunState = RunState.PLANNED
    services: dict[str, ServiceInstanceState] = field(default_factory=dict)
    events: list[ProgressEvent] = field(default_factory=list)
    applied_fallbacks: list[str] = field(default_factory=list)
    completed_stages: int = 0
    current_stage: int | None = None
    failure: RunFailure | None = None
    checkpoint_id: str | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    cancel_reason: str | None = None
    task: "asyncio.Task[Any] | None" = None
    _factory: EventFactory = field(init=False, repr=False)

    def __post_init__(self):
        self._factory = EventFactory(self.run_id)

    @property
    def progress(self) -> float:
        total = self.plan.total_stages
        if total == 0:
            return 1.0
        return self.completed_stages / total

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self.cancel_event.is_set():
            self.cancel_reason = reason
            self.cancel_event.set()

    async def wait(self) -> "RunContext":
        if self.task is not None:
            await self.task
        return self

    def record(self, event_type: type[ProgressEvent], **fields: Any) -> ProgressEvent:
        """Stamp an event, append it to the history and publish it."""
        event = self._factory.make(event_type, self.progress, **fields)
        self.events.append(event)
        if self.channel is not None:
            self.channel.publish(event)
        return event

    def service_summary(self) -> dict[str, dict[str, str]]:
        return {
            name: {"profile": s.profile, "status": s.status.value}
            for name, s in self.services.items()
        }


def new_run_id() -> str:
    return f"run-{time.time_ns()}"


class ExecutionEngine:
    def __init__(
        self,
        runtime: RuntimeDriver,
        registry: ProfileRegistry,
        settings: EngineSettings | None = None,
    ):
        self.runtime = runtime
        self.registry = registry
        self.settings = settings or EngineSettings()

    def create_run(
        self,
        plan: InstallationPlan,
        run_id: str | None = None,
        stream: bool = True,
    ) -> RunContext:
        channel = EventChannel(self.settings.event_queue_size) if stream else None
        return RunContext(
            run_id=run_id or new_run_id(),
            plan=plan,
            configuration=dict(plan.configuration),
            channel=channel,
        )

    def _set_status(
        self,
        ctx: RunContext,
        state: ServiceInstanceState,
        status: ServiceStatus,
        error: str | None = None,
    ) -> None:
        state.status = status
        if error is not None:
            state.last_error = error
        _logging.debug(f"{ctx.run_id}: {state.name} -> {status.value}")
        ctx.record(
            ServiceStatusChanged,
            service=state.name,
            profile=state.profile,
            status=status.value,
            error=error,
        )

    async def run(self, ctx: RunContext) -> RunContext:
        """Execute the plan. Returns the context in a terminal state.

        If the calling task is cancelled the run still ends ``cancelled``
        with its terminal event before the cancellation propagates.
        """
        if ctx.state is not RunState.PLANNED:
            raise RuntimeError(f"run {ctx.run_id} already started ({ctx.state.value})")

        ctx.state = RunState.RUNNING
        watchdog = asyncio.create_task(self._watchdog(ctx))
        try:
            await self._run_stages(ctx)
        except asyncio.CancelledError:
            _logging.warning(f"{ctx.run_id}: run task cancelled")
            ctx.cancel("run task cancelled")
            self._finish(ctx)
            raise
        except OrchestratorError as e:
            _logging.error(f"{ctx.run_id}: {e.kind}: {e.message}")
            ctx.failure = RunFailure(e.kind, e.message, internal=e.internal)
        except Exception as e:
            _logging.exception(f"{ctx.run_id}: unexpected error")
            ctx.failure = RunFailure(type(e).__name__, str(e), internal=True)
        finally:
            watchdog.cancel()

        self._finish(ctx)
        return ctx

    async def _watchdog(self, ctx: RunContext) -> None:
        await asyncio.sleep(self.settings.run_timeout)
        _logging.warning(
            f"{ctx.run_id}: run timeout of {self.settings.run_timeout}s reached, cancelling"
        )
        ctx.cancel(f"run timed out after {self.settings.run_timeout:g}s")

    async def _run_stages(self, ctx: RunContext) -> None:
        semaphore = asyncio.Semaphore(self.settings.max_workers)
        for stage in ctx.plan.stages:
            if ctx.cancel_event.is_set() or ctx.failure is not None:
                return

            ctx.current_stage = stage.index
            _logging.info(
                f"{ctx.run_id}: stage {stage.index}/{ctx.plan.total_stages}: "
                f"{', '.join(stage.service_names)}"
            )
            for service in stage.services:
                ctx.services[service.name] = ServiceInstanceState(
                    name=service.name, profile=service.profile
                )
            ctx.record(
                StageStarted, stage=stage.index, services=tuple(stage.service_names)
            )

            await asyncio.gather(
                *(self._run_service(ctx, service, semaphore) for service in stage.services)
            )

            if ctx.failure is not None or ctx.cancel_event.is_set():
                return
            ctx.completed_stages += 1
            ctx.record(StageCompleted, stage=stage.index)

    async def _run_service(
        self, ctx: RunContext, service: PlannedService, semaphore: asyncio.Semaphore
    ) -> None:
        state = ctx.services[service.name]
        async with semaphore:
            if ctx.cancel_event.is_set() or ctx.failure is not None:
                _logging.debug(f"{ctx.run_id}: not launching {service.name}")
                return

            self._set_status(ctx, state, ServiceStatus.STARTING)
            try:
                await asyncio.wait_for(
                    self._launch_and_poll(ctx, service, state),
                    timeout=self.settings.service_timeout,
                )
            except asyncio.TimeoutError:
                self._set_status(
                    ctx,
                    state,
                    ServiceStatus.FAILED,
                    f"no healthy status within {self.settings.service_timeout:g}s",
                )
            except OrchestratorError as e:
                self._set_status(ctx, state, ServiceStatus.FAILED, e.message)
            except Exception as e:
                self._set_status(ctx, state, ServiceStatus.FAILED, f"{type(e).__name__}: {e}")

        if state.status.is_failure:
            self._apply_failure_policy(ctx, service, state)

    async def _launch_and_poll(
        self, ctx: RunContext, service: PlannedService, state: ServiceInstanceState
    ) -> None:
        state.handle = await self.runtime.launch(service, dict(ctx.configuration))
        self._set_status(ctx, state, ServiceStatus.HEALTH_CHECKING)

        attempts = self.settings.health_check_attempts
        status = HealthStatus.UNKNOWN
        for attempt in range(attempts):
            delay = self.settings.backoff_delay(attempt)
            if delay:
                await asyncio.sleep(delay)
            state.attempts = attempt + 1
            status = await self.runtime.health_status(state.handle)
            _logging.debug(
                f"{ctx.run_id}: {service.name} health probe {attempt + 1}/{attempts}: "
                f"{status.value}"
            )
            if status is HealthStatus.HEALTHY:
                self._set_status(ctx, state, ServiceStatus.HEALTHY)
                return

        if status is HealthStatus.UNHEALTHY:
            self._set_status(
                ctx, state, ServiceStatus.UNHEALTHY, f"unhealthy after {attempts} health checks"
            )
        else:
            self._set_status(
                ctx,
                state,
                ServiceStatus.FAILED,
                f"health status still {status.value} after {attempts} health checks",
            )

    def _apply_failure_policy(
        self, ctx: RunContext, service: PlannedService, state: ServiceInstanceState
    ) -> None:
        owners = set(service.owners or (service.profile,))
        applicable = []
        for profile_id in ctx.plan.profiles:
            fallback = ctx.plan.fallbacks.get(profile_id)
            if fallback is None:
                continue
            optional = self.registry.get(profile_id).optional_dependencies
            if owners.intersection(optional):
                applicable.append(profile_id)

        for profile_id in applicable:
            if profile_id in ctx.applied_fallbacks:
                continue
            fallback = ctx.plan.fallbacks[profile_id]
            ctx.configuration.update(fallback.config_overrides)
            ctx.applied_fallbacks.append(profile_id)
            _logging.warning(
                f"{ctx.run_id}: {service.name} failed, applying fallback "
                f"'{fallback.id}' for {profile_id}: {fallback.message}"
            )
            ctx.record(
                FallbackApplied,
                service=service.name,
                profile=profile_id,
                strategy=fallback.id,
                message=fallback.message,
            )
        state.fallback_applied = bool(applicable)

        if not service.required:
            _logging.warning(f"{ctx.run_id}: optional service {service.name} failed")
            return

        hard = [
            dependent
            for owner in sorted(owners)
            for dependent in hard_dependents(self.registry, owner, ctx.plan.profiles)
        ]
        if applicable and not hard:
            return

        if ctx.failure is None:
            reason = state.last_error or state.status.value
            if hard:
                reason += f" (required by {', '.join(sorted(set(hard)))})"
            ctx.failure = RunFailure(
                error_kind="ServiceFailed",
                message=f"required service '{service.name}' failed: {reason}",
                service=service.name,
            )

    def _finish(self, ctx: RunContext) -> None:
        if ctx.failure is not None:
            ctx.state = RunState.FAILED
            _logging.error(f"{ctx.run_id}: run failed: {ctx.failure.message}")
            ctx.record(
                RunFailed,
                error_kind=ctx.failure.error_kind,
                message=ctx.failure.message,
                internal=ctx.failure.internal,
                service=ctx.failure.service,
            )
        elif ctx.cancel_event.is_set() and ctx.completed_stages < ctx.plan.total_stages:
            ctx.state = RunState.CANCELLED
            _logging.info(f"{ctx.run_id}: run cancelled: {ctx.cancel_reason}")
            ctx.record(RunCancelled, reason=ctx.cancel_reason or "cancelled")
        else:
            ctx.state = RunState.COMPLETED
            _logging.info(f"{ctx.run_id}: run completed")
            ctx.record(RunCompleted)
        ctx.current_stage = None

    async def stop_services(self, handles: Iterable[ServiceHandle]) -> list[str]:
        """Stop services in reverse order, returning the names stopped.

        Raises:
            StopFailed: On the first failure, listing the services already stopped
        """
        stopped = []
        for handle in reversed(list(handles)):
            _logging.info(f"Stopping {handle.name} ({handle.profile})")
            try:
                await self.runtime.stop(handle)
            except Exception as e:
                cause = e.message if isinstance(e, OrchestratorError) else str(e)
                _logging.error(f"Stopping {handle.name} failed after stopping {stopped}")
                raise StopFailed(handle.name, cause, stopped) from e
            stopped.append(handle.name)
        return stopped


__all__ = [
    "RunState",
    "ServiceStatus",
    "ServiceInstanceState",
    "RunFailure",
    "RunContext",
    "ExecutionEngine",
    "new_run_id",
]
