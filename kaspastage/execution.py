"""Async command execution utilities."""

import asyncio
import logging
import os
import shlex
from pathlib import Path
from typing import Sequence

DEFAULT_TIMEOUT = 30
LAUNCH_TIMEOUT = 300
STOP_TIMEOUT = 120

_logging = logging.getLogger(__name__)


def format_command(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await asyncio.shield(process.wait())


async def run_command_async(
    args: Sequence[str],
    timeout: float = DEFAULT_TIMEOUT,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> tuple[str, int]:
    """Run a command and return its combined output and return code.

    The command is never run through a shell. A timeout kills the process
    and reports return code 1; cancellation kills it and propagates.
    """
    command = format_command(args)
    try:
        _logging.debug(f"Running command: {command}")
        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=process_env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            await _kill(process)
            _logging.error(f"Command timed out after {timeout} seconds: {command}")
            return f"Command timed out after {timeout} seconds", 1
        except BaseException:
            await _kill(process)
            _logging.warning(f"Command interrupted, killed: {command}")
            raise

        output = stdout.decode(errors="replace").strip()
        if stderr:
            err = stderr.decode(errors="replace").strip()
            _logging.debug(f"stderr: {err}")
            if process.returncode:
                output = "\n".join(part for part in (output, err) if part)
        return output, process.returncode if process.returncode is not None else 1
    except OSError as e:
        _logging.error(f"Command execution failed: {type(e).__name__}: {e} | Command: {command}")
        return f"Error: {e}", 1


__all__ = ["DEFAULT_TIMEOUT", "LAUNCH_TIMEOUT", "STOP_TIMEOUT", "run_command_async"]
