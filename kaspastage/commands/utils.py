"""Shared helpers for CLI commands."""

import sys
from typing import NoReturn

import click

from kaspastage import is_debug
from kaspastage.config import ConfigError, UserConfig, load_user_config, parse_assignments
from kaspastage.data_loader import load_registry
from kaspastage.errors import (
    NoCheckpointAvailable,
    OrchestratorError,
    format_error,
    format_suggestion,
)
from kaspastage.orchestrator import (
    ComposeRuntime,
    Coordinator,
    FallbackApplied,
    ProfileRegistry,
    ProgressEvent,
    RunCancelled,
    RunCompleted,
    RunFailed,
    RuntimeDriver,
    ServiceStatusChanged,
    StageCompleted,
    StageStarted,
)
from kaspastage.paths import get_project_dir, get_state_dir
from kaspastage.system import probe_host_capacity


def create_runtime() -> RuntimeDriver:
    return ComposeRuntime(get_project_dir())


def build_coordinator(
    user_config: UserConfig, registry: ProfileRegistry | None = None
) -> Coordinator:
    return Coordinator(
        registry or load_registry(),
        create_runtime(),
        get_state_dir(),
        settings=user_config.engine,
        capacity_probe=probe_host_capacity,
    )


def load_settings() -> UserConfig:
    """Load the user config file; ``--set`` values are layered by resolve_selection."""
    return load_user_config()


def fail(error: Exception) -> NoReturn:
    """Print an error the way every command does and exit with status 1."""
    if isinstance(error, NoCheckpointAvailable):
        message = format_suggestion(error.message, "install or remove a profile first")
    elif isinstance(error, OrchestratorError):
        message = f"{format_error(error.message)} [{error.kind}]"
        if error.internal:
            message += " (internal error, please report it)"
    elif isinstance(error, ConfigError):
        message = format_error(str(error))
    else:
        message = format_error(f"{type(error).__name__}: {error}")
    click.echo(message, err=True)
    if is_debug() and isinstance(error, OrchestratorError):
        click.echo(f"Details: {error.to_dict()}", err=True)
    sys.exit(1)


def format_event(event: ProgressEvent, total_stages: int) -> str | None:
    if isinstance(event, StageStarted):
        return f"▶ Stage {event.stage}/{total_stages}: {', '.join(event.services)}"
    if isinstance(event, ServiceStatusChanged):
        line = f"   • {event.service}: {event.status}"
        if event.error:
            line += f" ({event.error})"
        return line
    if isinstance(event, FallbackApplied):
        return f"   ⚠️  {event.profile}: using fallback '{event.strategy}' ({event.message})"
    if isinstance(event, StageCompleted):
        return f"✅ Stage {event.stage} complete ({event.progress:.0%})"
    if isinstance(event, RunCompleted):
        return "✅ Installation completed"
    if isinstance(event, RunFailed):
        line = f"❌ Installation failed [{event.error_kind}]: {event.message}"
        if event.internal:
            line += " (internal error)"
        return line
    if isinstance(event, RunCancelled):
        return f"⏹  Installation cancelled: {event.reason}"
    return None


def resolve_selection(
    registry: ProfileRegistry,
    user_config: UserConfig,
    profile_ids: tuple[str, ...],
    template_id: str | None = None,
    assignments: tuple[str, ...] = (),
) -> tuple[list[str], dict[str, str]]:
    """Combine template, arguments and config file into a selection and values.

    Later layers win for values: config file, then template, then ``--set``.
    The config file's ``profiles`` are used only when nothing else is selected.

    Raises:
        ConfigError: If nothing is selected or an assignment is malformed
        CatalogError: If the template does not exist
    """
    values = dict(user_config.configuration)
    selection: list[str] = []
    if template_id:
        template = registry.get_template(template_id)
        selection.extend(template.profiles)
        values.update(template.config)
    selection.extend(p for p in profile_ids if p not in selection)
    if not selection:
        selection = list(user_config.profiles)
    if not selection:
        raise ConfigError(
            "No profiles selected. Pass profile IDs, --template, "
            "or set 'profiles' in the config file"
        )
    values.update(parse_assignments(assignments))
    return selection, values
