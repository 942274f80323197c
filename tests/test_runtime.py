"""Tests for the compose runtime driver and command execution."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from kaspastage.errors import RuntimeDriverError
from kaspastage.execution import format_command, run_command_async
from kaspastage.orchestrator import ComposeRuntime, HealthStatus, PlannedService, ServiceHandle

NODE = PlannedService(name="kaspa-node", profile="core", tier=1, required=True)


@pytest.fixture
def runner(monkeypatch) -> AsyncMock:
    mock = AsyncMock(return_value=("", 0))
    monkeypatch.setattr("kaspastage.orchestrator.runtime.run_command_async", mock)
    return mock


class TestComposeRuntime:
    """Tests for ComposeRuntime with a mocked command runner."""

    @pytest.mark.asyncio
    async def test_launch_command(self, runner, temp_dir: Path):
        runtime = ComposeRuntime(temp_dir)
        handle = await runtime.launch(NODE, {"KASPA_NODE_RPC_PORT": "16110"})

        assert handle == ServiceHandle(name="kaspa-node", profile="core", ref="kaspa-node")
        args = runner.call_args.args[0]
        assert args == [
            "docker", "compose", "-f", "docker-compose.yml", "up", "-d", "--no-deps", "kaspa-node"
        ]
        assert runner.call_args.kwargs["cwd"] == temp_dir
        assert runner.call_args.kwargs["env"] == {"KASPA_NODE_RPC_PORT": "16110"}

    @pytest.mark.asyncio
    async def test_launch_failure(self, runner, temp_dir: Path):
        runner.return_value = ("no such service", 1)
        with pytest.raises(RuntimeDriverError, match="no such service") as exc_info:
            await ComposeRuntime(temp_dir).launch(NODE, {})
        assert exc_info.value.service == "kaspa-node"

    @pytest.mark.parametrize(
        "output,expected",
        [
            ("healthy", HealthStatus.HEALTHY),
            ("running\n", HealthStatus.HEALTHY),
            ("unhealthy", HealthStatus.UNHEALTHY),
            ("exited", HealthStatus.UNHEALTHY),
            ("starting", HealthStatus.UNKNOWN),
        ],
    )
    @pytest.mark.asyncio
    async def test_health_status_mapping(self, runner, temp_dir: Path, output, expected):
        runner.return_value = (output, 0)
        handle = ServiceHandle(name="kaspa-node", profile="core", ref="kaspa-node")
        assert await ComposeRuntime(temp_dir).health_status(handle) is expected

    @pytest.mark.asyncio
    async def test_inspect_failure_is_unknown(self, runner, temp_dir: Path):
        runner.return_value = ("No such object", 1)
        handle = ServiceHandle(name="kaspa-node", profile="core")
        assert await ComposeRuntime(temp_dir).health_status(handle) is HealthStatus.UNKNOWN
        assert runner.call_args.args[0][-1] == "kaspa-node"

    @pytest.mark.asyncio
    async def test_stop(self, runner, temp_dir: Path):
        runtime = ComposeRuntime(temp_dir, compose_file="stack.yml")
        await runtime.stop(ServiceHandle(name="wallet", profile="core"))
        assert runner.call_args.args[0] == [
            "docker", "compose", "-f", "stack.yml", "rm", "--stop", "--force", "wallet"
        ]

    @pytest.mark.asyncio
    async def test_stop_failure(self, runner, temp_dir: Path):
        runner.return_value = ("", 3)
        with pytest.raises(RuntimeDriverError, match="exit code 3"):
            await ComposeRuntime(temp_dir).stop(ServiceHandle(name="wallet", profile="core"))


class TestRunCommandAsync:
    """Tests for run_command_async()."""

    def test_format_command_quotes(self):
        assert format_command(["echo", "a b"]) == "echo 'a b'"

    @pytest.mark.asyncio
    async def test_success(self):
        output, rc = await run_command_async(["echo", "hello"])
        assert output == "hello"
        assert rc == 0

    @pytest.mark.asyncio
    async def test_env_passed_through(self):
        output, rc = await run_command_async(
            ["sh", "-c", "echo $KASPASTAGE_TEST_VALUE"], env={"KASPASTAGE_TEST_VALUE": "42"}
        )
        assert output == "42"

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        output, rc = await run_command_async(["kaspastage-no-such-binary"])
        assert rc == 1
        assert output.startswith("Error:")

    @pytest.mark.asyncio
    async def test_timeout(self):
        output, rc = await run_command_async(["sleep", "5"], timeout=0.1)
        assert rc == 1
        assert "timed out" in output

    @pytest.mark.asyncio
    async def test_cancel_kills_child(self, temp_dir: Path):
        marker = temp_dir / "marker"
        task = asyncio.create_task(
            run_command_async(["sh", "-c", f"sleep 0.5; touch {marker}"], timeout=5)
        )
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(0.8)
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_undecodable_output_replaced(self):
        output, rc = await run_command_async(["sh", "-c", r"printf '\377ok'"])
        assert rc == 0
        assert output == "\ufffdok"
