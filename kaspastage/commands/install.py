"""Install command implementation."""

import asyncio
import logging
import signal
import sys

import click

from kaspastage.config import ConfigError
from kaspastage.data_loader import load_registry
from kaspastage.errors import OrchestratorError
from kaspastage.orchestrator import RunState, render_plan
from kaspastage.commands.utils import (
    build_coordinator,
    fail,
    format_event,
    load_settings,
    resolve_selection,
)

_logging = logging.getLogger(__name__)


@click.command()
@click.argument("profile_ids", nargs=-1)
@click.option("--template", "-t", "template_id", help="Start from a named template")
@click.option(
    "--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Set a configuration value"
)
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option(
    "--rollback-on-failure",
    is_flag=True,
    help="Restore the pre-install checkpoint if the run fails",
)
@click.option(
    "--treat-capacity-as-fatal",
    is_flag=True,
    help="Refuse to install when host capacity looks insufficient",
)
def install(
    profile_ids: tuple[str, ...],
    template_id: str | None,
    assignments: tuple[str, ...],
    yes: bool,
    rollback_on_failure: bool,
    treat_capacity_as_fatal: bool,
):
    """Install profiles, streaming progress as services come up."""
    try:
        state = asyncio.run(
            run_install(
                profile_ids,
                template_id,
                assignments,
                yes,
                rollback_on_failure,
                treat_capacity_as_fatal,
            )
        )
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    if state is not None and state is not RunState.COMPLETED:
        sys.exit(1)


async def run_install(
    profile_ids: tuple[str, ...],
    template_id: str | None,
    assignments: tuple[str, ...],
    yes: bool,
    rollback_on_failure: bool,
    treat_capacity_as_fatal: bool,
) -> RunState | None:
    user_config = load_settings()
    registry = load_registry()
    selection, values = resolve_selection(
        registry, user_config, profile_ids, template_id, assignments
    )
    coordinator = build_coordinator(user_config, registry)

    prepared = coordinator.prepare(selection, values)
    click.echo(render_plan(prepared.plan, prepared.capacity))
    click.echo("")

    if not prepared.plan.is_ready():
        missing = ", ".join(
            key for keys in prepared.plan.missing_configuration.values() for key in keys
        )
        raise ConfigError(f"Missing required configuration: {missing}. Use --set KEY=VALUE")

    if not yes and not click.confirm("Continue with installation?", default=False):
        click.echo("Installation cancelled.")
        return None

    ctx = await coordinator.start_install(
        selection,
        values,
        rollback_on_failure=rollback_on_failure,
        treat_capacity_as_fatal=treat_capacity_as_fatal,
    )
    _logging.debug(f"Started {ctx.run_id} (checkpoint {ctx.checkpoint_id})")

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, ctx.cancel, "interrupted")
    try:
        total = ctx.plan.total_stages
        if ctx.channel is not None:
            async for event in ctx.channel:
                line = format_event(event, total)
                if line:
                    click.echo(line)
        await ctx.wait()
    finally:
        loop.remove_signal_handler(signal.SIGINT)

    if ctx.state is RunState.ROLLED_BACK:
        click.echo(f"↩️  Rolled back to checkpoint {ctx.checkpoint_id}")
    elif ctx.state is not RunState.COMPLETED:
        click.echo(f"Run 'kaspastage undo' to return to checkpoint {ctx.checkpoint_id}.")
    return ctx.state
