"""End-to-end install, removal and rollback flow guarded by a run lock.

Only one mutating operation (install, removal, undo, restore) runs at a
time. A second request while one is active raises RunAlreadyInProgress.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from ..config import EngineSettings
from ..errors import InsufficientCapacity, RunAlreadyInProgress, StopFailed
from ..paths import get_checkpoint_dir
from .checkpoints import Checkpoint, CheckpointManager, CheckpointStore
from .engine import ExecutionEngine, RunContext, RunState
from .models import CapacityReport, HostCapacity, InstallationPlan, Resolution
from .planning import plan_installation
from .registry import ProfileRegistry
from .resolution import resolve_profiles, validate_removal
from .resources import calculate_requirements, check_capacity
from .runtime import RuntimeDriver, ServiceHandle
from .state import InstallationState, StateStore

_logging = logging.getLogger(__name__)

CapacityProbe = Callable[[], HostCapacity | None]


@dataclass
class PreparedInstall:
    resolution: Resolution
    plan: InstallationPlan
    capacity: CapacityReport
    values: dict[str, str]


@dataclass
class RemovalResult:
    profile: str
    checkpoint_id: str
    stopped: list[str]
    remaining: list[str]


class Coordinator:
    def __init__(
        self,
        registry: ProfileRegistry,
        runtime: RuntimeDriver,
        state_dir: Path,
        settings: EngineSettings | None = None,
        capacity_probe: CapacityProbe | None = None,
    ):
        self.registry = registry
        self.settings = settings or EngineSettings()
        self.engine = ExecutionEngine(runtime, registry, self.settings)
        self.state_store = StateStore(state_dir / "state.json")
        self.checkpoints = CheckpointManager(
            CheckpointStore(get_checkpoint_dir(state_dir)),
            self.state_store,
            reconciler=self._reconcile,
        )
        self.capacity_probe = capacity_probe
        self._lock = asyncio.Lock()
        self._active: str | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def _acquire(self, operation: str) -> None:
        if self._lock.locked():
            raise RunAlreadyInProgress(self._active)
        await self._lock.acquire()
        self._active = operation

    def _release(self) -> None:
        self._active = None
        self._lock.release()

    def current_state(self) -> InstallationState:
        return self.state_store.load()

    def validate(self, profile_ids: Iterable[str]) -> Resolution:
        return resolve_profiles(self.registry, profile_ids)

    def prepare(
        self,
        profile_ids: Iterable[str],
        values: dict[str, str] | None = None,
        include_installed: bool = True,
    ) -> PreparedInstall:
        """Validate, size and plan an installation without side effects.

        With ``include_installed`` the target is the union of the installed
        profiles and ``profile_ids``, and stored values sit under ``values``.
        """
        requested = list(profile_ids)
        configuration = {}
        if include_installed:
            state = self.state_store.load()
            requested = state.profiles + [p for p in requested if p not in state.profiles]
            configuration.update(state.values)
        configuration.update(values or {})

        resolution = resolve_profiles(self.registry, requested)
        requirement = calculate_requirements(self.registry, resolution.profiles)
        capacity = self.capacity_probe() if self.capacity_probe else None
        report = check_capacity(requirement, capacity)
        plan = plan_installation(self.registry, resolution, configuration)
        return PreparedInstall(
            resolution=resolution, plan=plan, capacity=report, values=configuration
        )

    async def start_install(
        self,
        profile_ids: Iterable[str],
        values: dict[str, str] | None = None,
        *,
        rollback_on_failure: bool = False,
        treat_capacity_as_fatal: bool = False,
        stream: bool = True,
    ) -> RunContext:
        """Validate and plan, checkpoint the current state, then start the run.

        Returns as soon as the run is started; consume ``ctx.channel`` for
        progress and ``await ctx.wait()`` for completion.

        Raises:
            RunAlreadyInProgress: If another operation holds the run lock
            ValidationError: If the profile set or capacity check is rejected
        """
        await self._acquire("install")
        try:
            prepared = self.prepare(profile_ids, values)
            if treat_capacity_as_fatal and not prepared.capacity.sufficient:
                raise InsufficientCapacity(prepared.capacity.warnings)

            checkpoint_id = self.checkpoints.create_checkpoint(
                f"Before installing {', '.join(prepared.plan.profiles)}"
            )
            ctx = self.engine.create_run(prepared.plan, stream=stream)
            ctx.checkpoint_id = checkpoint_id
            self._active = ctx.run_id
        except BaseException:
            self._release()
            raise

        ctx.task = asyncio.create_task(self._execute(ctx, prepared.values, rollback_on_failure))
        return ctx

    async def install(
        self,
        profile_ids: Iterable[str],
        values: dict[str, str] | None = None,
        *,
        rollback_on_failure: bool = False,
        treat_capacity_as_fatal: bool = False,
    ) -> RunContext:
        """Run an installation to completion and return its context."""
        ctx = await self.start_install(
            profile_ids,
            values,
            rollback_on_failure=rollback_on_failure,
            treat_capacity_as_fatal=treat_capacity_as_fatal,
            stream=False,
        )
        return await ctx.wait()

    async def _execute(
        self, ctx: RunContext, values: dict[str, str], rollback_on_failure: bool
    ) -> None:
        try:
            try:
                await self.engine.run(ctx)
            except asyncio.CancelledError:
                self._record_run(ctx, values)
                raise
            self._record_run(ctx, values)

            if ctx.state is RunState.COMPLETED:
                self.checkpoints.create_checkpoint(
                    f"Installed {', '.join(ctx.plan.profiles)}"
                )
                self._apply_retention()
            elif ctx.state is RunState.FAILED and rollback_on_failure and ctx.checkpoint_id:
                _logging.warning(
                    f"{ctx.run_id}: rolling back to checkpoint {ctx.checkpoint_id}"
                )
                await self.checkpoints.restore_version(ctx.checkpoint_id)
                ctx.state = RunState.ROLLED_BACK
        finally:
            self._release()

    def _record_run(self, ctx: RunContext, values: dict[str, str]) -> None:
        """Persist the attempted profile set, the user values and service statuses."""
        previous = self.state_store.load()
        services = {
            name: info
            for name, info in previous.services.items()
            if name not in ctx.services
        }
        services.update(ctx.service_summary())
        self.state_store.save(
            InstallationState(
                profiles=list(ctx.plan.profiles),
                values=dict(values),
                services=services,
            )
        )

    def _apply_retention(self) -> None:
        keep = self.settings.checkpoint_retention
        if keep is not None:
            self.checkpoints.prune(keep)

    async def _reconcile(
        self, previous: InstallationState, restored: InstallationState
    ) -> None:
        """Stop tracked services whose profile is not in the restored set."""
        keep = set(restored.profiles)
        handles = [
            ServiceHandle(name=name, profile=info["profile"])
            for name, info in previous.services.items()
            if info.get("profile") not in keep and name not in restored.services
        ]
        if handles:
            await self.engine.stop_services(handles)

    async def remove_profile(self, profile_id: str) -> RemovalResult:
        """Remove an installed profile, stopping services no other profile uses.

        Raises:
            ProfileNotInstalled, ProfileInUse, PrerequisiteNotMet: See validate_removal
            RunAlreadyInProgress: If another operation holds the run lock
            StopFailed: If a service cannot be stopped
        """
        await self._acquire(f"remove {profile_id}")
        try:
            state = self.state_store.load()
            resolution = validate_removal(self.registry, state.profiles, profile_id)
            remaining = resolution.profiles

            checkpoint_id = self.checkpoints.create_checkpoint(
                f"Before removing profile {profile_id}"
            )

            kept_services: set[str] = set()
            kept_keys: set[str] = set()
            for other_id in remaining:
                other = self.registry.get(other_id)
                kept_services.update(other.service_names)
                kept_keys.update(other.config_keys)
                if other.fallback is not None:
                    kept_keys.update(other.fallback.config_overrides)

            profile = self.registry.get(profile_id)
            handles = [
                ServiceHandle(name=name, profile=profile_id)
                for name in profile.service_names
                if name not in kept_services and name in state.services
            ]
            try:
                stopped = await self.engine.stop_services(handles)
            except StopFailed as e:
                self.state_store.save(state.with_stopped(e.stopped))
                raise

            services = {
                name: info
                for name, info in state.services.items()
                if name not in stopped
            }
            for name in profile.service_names:
                if name in services and name in kept_services:
                    owner = next(
                        p for p in remaining if name in self.registry.get(p).service_names
                    )
                    services[name] = dict(services[name], profile=owner)

            values = {
                key: value
                for key, value in state.values.items()
                if key not in profile.config_keys or key in kept_keys
            }
            self.state_store.save(
                InstallationState(profiles=remaining, values=values, services=services)
            )
            _logging.info(f"Removed profile {profile_id}, stopped {stopped}")
            return RemovalResult(
                profile=profile_id,
                checkpoint_id=checkpoint_id,
                stopped=stopped,
                remaining=remaining,
            )
        finally:
            self._release()

    async def undo(self) -> Checkpoint:
        await self._acquire("undo")
        try:
            return await self.checkpoints.undo_last_change()
        finally:
            self._release()

    async def restore(self, checkpoint_id: str) -> Checkpoint:
        await self._acquire(f"restore {checkpoint_id}")
        try:
            return await self.checkpoints.restore_version(checkpoint_id)
        finally:
            self._release()

    def history(self) -> tuple[list[Checkpoint], str | None]:
        return self.checkpoints.list_checkpoints(), self.checkpoints.head

    async def prune(self, keep: int) -> list[str]:
        await self._acquire("prune")
        try:
            return self.checkpoints.prune(keep)
        finally:
            self._release()


__all__ = [
    "Coordinator",
    "PreparedInstall",
    "RemovalResult",
]
