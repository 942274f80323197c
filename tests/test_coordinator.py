"""Tests for the install, removal and rollback coordinator."""

import asyncio
from pathlib import Path

import pytest

from kaspastage.config import EngineSettings
from kaspastage.errors import (
    InsufficientCapacity,
    NoCheckpointAvailable,
    PrerequisiteNotMet,
    ProfileConflict,
    ProfileNotInstalled,
    RunAlreadyInProgress,
    StopFailed,
)
from kaspastage.orchestrator import Coordinator, HealthStatus, HostCapacity, RunState

INDEXER_VALUES = {"POSTGRES_PASSWORD": "pw"}


@pytest.fixture
def make_coordinator(registry, fake_runtime, fast_settings, temp_dir: Path):
    def _make(runtime=None, settings=None, capacity=None, catalog=None) -> Coordinator:
        probe = (lambda: capacity) if capacity is not None else None
        return Coordinator(
            catalog or registry,
            runtime or fake_runtime,
            temp_dir / "state",
            settings=settings or fast_settings,
            capacity_probe=probe,
        )

    return _make


class TestInstall:
    """Tests for Coordinator.install()."""

    @pytest.mark.asyncio
    async def test_successful_install(self, make_coordinator):
        coordinator = make_coordinator()
        ctx = await coordinator.install(["core"])

        assert ctx.state is RunState.COMPLETED
        state = coordinator.current_state()
        assert state.profiles == ["core"]
        assert state.services["kaspa-node"] == {"profile": "core", "status": "healthy"}

        checkpoints, head = coordinator.history()
        assert [c.description for c in checkpoints] == ["Before installing core", "Installed core"]
        assert ctx.checkpoint_id == checkpoints[0].id
        assert head is None
        assert not coordinator.busy

    @pytest.mark.asyncio
    async def test_user_values_persisted_not_defaults(self, make_coordinator):
        coordinator = make_coordinator()
        await coordinator.install(["core"], {"PUBLIC_NODE": "true"})
        assert coordinator.current_state().values == {"PUBLIC_NODE": "true"}

    @pytest.mark.asyncio
    async def test_incremental_install_keeps_installed_profiles(
        self, make_coordinator, fake_runtime
    ):
        coordinator = make_coordinator()
        await coordinator.install(["core"], {"PUBLIC_NODE": "true"})
        ctx = await coordinator.install(["mining"], {"MINING_ADDRESS": "kaspa:q"})

        assert ctx.state is RunState.COMPLETED
        assert ctx.plan.profiles == ["core", "mining"]
        state = coordinator.current_state()
        assert state.profiles == ["core", "mining"]
        assert state.values == {"PUBLIC_NODE": "true", "MINING_ADDRESS": "kaspa:q"}
        assert fake_runtime.launched.count("kaspa-stratum") == 1

    @pytest.mark.asyncio
    async def test_validation_error_releases_lock(self, make_coordinator):
        coordinator = make_coordinator()
        with pytest.raises(ProfileConflict):
            await coordinator.install(["core", "archive-node"])
        assert not coordinator.busy
        assert coordinator.history() == ([], None)

    @pytest.mark.asyncio
    async def test_capacity_shortfall_is_fatal_on_request(self, make_coordinator):
        coordinator = make_coordinator(capacity=HostCapacity(cpu=1, memory=1, disk=1))
        with pytest.raises(InsufficientCapacity) as exc_info:
            await coordinator.install(["core"], treat_capacity_as_fatal=True)
        assert exc_info.value.warnings[0].startswith("CPU:")
        assert not coordinator.busy
        assert coordinator.history() == ([], None)

    @pytest.mark.asyncio
    async def test_capacity_shortfall_is_a_warning_by_default(self, make_coordinator):
        coordinator = make_coordinator(capacity=HostCapacity(cpu=1, memory=1, disk=1))
        prepared = coordinator.prepare(["core"])
        assert not prepared.capacity.sufficient

        ctx = await coordinator.install(["core"])
        assert ctx.state is RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_install_rejected(self, make_coordinator, runtime_factory):
        coordinator = make_coordinator(runtime=runtime_factory(launch_delay=0.05))
        ctx = await coordinator.start_install(["core"])
        assert coordinator.busy

        with pytest.raises(RunAlreadyInProgress) as exc_info:
            await coordinator.start_install(["core"])
        assert exc_info.value.run_id == ctx.run_id
        with pytest.raises(RunAlreadyInProgress):
            await coordinator.undo()

        await ctx.wait()
        assert ctx.state is RunState.COMPLETED
        assert not coordinator.busy

    @pytest.mark.asyncio
    async def test_cancelled_task_records_run(self, make_coordinator, runtime_factory):
        coordinator = make_coordinator(runtime=runtime_factory(launch_delay=0.5))
        ctx = await coordinator.start_install(["core"], stream=False)
        await asyncio.sleep(0.05)
        ctx.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await ctx.wait()

        assert ctx.state is RunState.CANCELLED
        assert ctx.events[-1].kind == "run_cancelled"
        state = coordinator.current_state()
        assert state.profiles == ["core"]
        assert set(state.services) == {"kaspa-node", "wallet"}
        assert not coordinator.busy

    @pytest.mark.asyncio
    async def test_streamed_install(self, make_coordinator):
        coordinator = make_coordinator()
        ctx = await coordinator.start_install(["core"])
        kinds = [event.kind async for event in ctx.channel]
        await ctx.wait()
        assert kinds[0] == "stage_started"
        assert kinds[-1] == "run_completed"

    @pytest.mark.asyncio
    async def test_checkpoint_retention(self, make_coordinator):
        settings = EngineSettings(
            health_check_base_delay=0, health_check_max_delay=0, checkpoint_retention=2
        )
        coordinator = make_coordinator(settings=settings)
        await coordinator.install(["core"])
        await coordinator.install(["mining"], {"MINING_ADDRESS": "kaspa:q"})

        checkpoints, _ = coordinator.history()
        assert [c.description for c in checkpoints] == [
            "Before installing core, mining",
            "Installed core, mining",
        ]


class TestFailedInstall:
    """Tests for failed runs, undo and automatic rollback."""

    @pytest.mark.asyncio
    async def test_failed_run_then_undo(self, make_coordinator, runtime_factory):
        runtime = runtime_factory(health={"kaspa-node": [HealthStatus.UNHEALTHY]})
        coordinator = make_coordinator(runtime=runtime)
        ctx = await coordinator.install(["core"])

        assert ctx.state is RunState.FAILED
        assert coordinator.current_state().profiles == ["core"]
        assert len(coordinator.history()[0]) == 1

        restored = await coordinator.undo()
        assert restored.id == ctx.checkpoint_id
        assert coordinator.current_state().profiles == []
        assert runtime.stopped == ["wallet", "kaspa-node"]

    @pytest.mark.asyncio
    async def test_rollback_on_failure(self, make_coordinator, runtime_factory):
        runtime = runtime_factory(health={"kaspa-node": [HealthStatus.UNHEALTHY]})
        coordinator = make_coordinator(runtime=runtime)
        ctx = await coordinator.install(["core"], rollback_on_failure=True)

        assert ctx.state is RunState.ROLLED_BACK
        assert coordinator.current_state().profiles == []
        assert coordinator.history()[1] == ctx.checkpoint_id
        assert not coordinator.busy

    @pytest.mark.asyncio
    async def test_rollback_keeps_previously_installed(self, make_coordinator, runtime_factory):
        runtime = runtime_factory(health={"kaspa-stratum": [HealthStatus.UNHEALTHY]})
        coordinator = make_coordinator(runtime=runtime)
        await coordinator.install(["core"])
        ctx = await coordinator.install(
            ["mining"], {"MINING_ADDRESS": "kaspa:q"}, rollback_on_failure=True
        )

        assert ctx.state is RunState.ROLLED_BACK
        assert coordinator.current_state().profiles == ["core"]
        assert runtime.stopped == ["kaspa-stratum"]

    @pytest.mark.asyncio
    async def test_failed_undo_records_stopped_services(self, make_coordinator, runtime_factory):
        runtime = runtime_factory(stop_errors={"kaspa-node"})
        coordinator = make_coordinator(runtime=runtime)
        await coordinator.install(["core"])

        with pytest.raises(StopFailed) as exc_info:
            await coordinator.undo()
        assert exc_info.value.stopped == ["wallet"]
        assert runtime.stopped == ["wallet"]

        state = coordinator.current_state()
        assert state.profiles == ["core"]
        assert state.services["wallet"]["status"] == "stopped"
        assert state.services["kaspa-node"]["status"] == "healthy"
        assert coordinator.history()[1] is None
        assert not coordinator.busy

    @pytest.mark.asyncio
    async def test_undo_without_history(self, make_coordinator):
        with pytest.raises(NoCheckpointAvailable):
            await make_coordinator().undo()


class TestRemoveProfile:
    """Tests for Coordinator.remove_profile()."""

    @pytest.mark.asyncio
    async def test_remove_profile(self, make_coordinator, fake_runtime):
        coordinator = make_coordinator()
        await coordinator.install(["core", "indexer-services"], INDEXER_VALUES)

        result = await coordinator.remove_profile("indexer-services")
        assert result.stopped == [
            "simply-kaspa-indexer",
            "k-indexer",
            "kasia-indexer",
            "timescaledb",
        ]
        assert result.remaining == ["core"]

        state = coordinator.current_state()
        assert state.profiles == ["core"]
        assert state.values == {}
        assert set(state.services) == {"kaspa-node", "wallet"}
        assert coordinator.history()[0][-1].description == "Before removing profile indexer-services"

    @pytest.mark.asyncio
    async def test_remove_then_undo(self, make_coordinator):
        coordinator = make_coordinator()
        await coordinator.install(["core", "indexer-services"], INDEXER_VALUES)
        await coordinator.remove_profile("indexer-services")

        await coordinator.undo()
        state = coordinator.current_state()
        assert state.profiles == ["core", "indexer-services"]
        assert state.values == INDEXER_VALUES

    @pytest.mark.asyncio
    async def test_shared_service_kept(self, make_coordinator, shared_db_registry, fake_runtime):
        coordinator = make_coordinator(catalog=shared_db_registry)
        await coordinator.install(["indexer-a", "indexer-b"])

        result = await coordinator.remove_profile("indexer-a")
        assert result.stopped == ["indexer-a"]
        services = coordinator.current_state().services
        assert services["shared-db"]["profile"] == "indexer-b"
        assert "indexer-a" not in services

    @pytest.mark.asyncio
    async def test_remove_not_installed(self, make_coordinator):
        with pytest.raises(ProfileNotInstalled):
            await make_coordinator().remove_profile("core")

    @pytest.mark.asyncio
    async def test_remove_last_prerequisite(self, make_coordinator):
        coordinator = make_coordinator()
        await coordinator.install(["core", "mining"], {"MINING_ADDRESS": "kaspa:q"})
        checkpoints_before = len(coordinator.history()[0])

        with pytest.raises(PrerequisiteNotMet):
            await coordinator.remove_profile("core")
        assert len(coordinator.history()[0]) == checkpoints_before
        assert not coordinator.busy

    @pytest.mark.asyncio
    async def test_stop_failure_keeps_profile_installed(self, make_coordinator, runtime_factory):
        runtime = runtime_factory(stop_errors={"timescaledb"})
        coordinator = make_coordinator(runtime=runtime)
        await coordinator.install(["core", "indexer-services"], INDEXER_VALUES)

        with pytest.raises(StopFailed):
            await coordinator.remove_profile("indexer-services")

        state = coordinator.current_state()
        assert state.profiles == ["core", "indexer-services"]
        assert state.values == INDEXER_VALUES
        for name in ("simply-kaspa-indexer", "k-indexer", "kasia-indexer"):
            assert state.services[name]["status"] == "stopped"
        assert state.services["timescaledb"]["status"] == "healthy"
        assert not coordinator.busy
