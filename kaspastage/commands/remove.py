"""Remove command implementation."""

import asyncio

import click

from kaspastage.config import ConfigError
from kaspastage.errors import OrchestratorError
from kaspastage.commands.utils import build_coordinator, fail, load_settings


@click.command()
@click.argument("profile_id")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
def remove(profile_id: str, yes: bool):
    """Remove an installed profile and stop the services only it uses."""
    if not yes and not click.confirm(f"Remove profile '{profile_id}'?", default=False):
        click.echo("Removal cancelled.")
        return

    try:
        coordinator = build_coordinator(load_settings())
        result = asyncio.run(coordinator.remove_profile(profile_id))
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    click.echo(f"✅ Removed {result.profile}")
    if result.stopped:
        click.echo(f"   Stopped: {', '.join(result.stopped)}")
    click.echo(f"   Remaining profiles: {', '.join(result.remaining) or '(none)'}")
    click.echo(f"   Checkpoint: {result.checkpoint_id} (use 'kaspastage undo' to revert)")
