"""Validate command implementation."""

import click

from kaspastage.config import ConfigError
from kaspastage.data_loader import load_registry
from kaspastage.errors import OrchestratorError
from kaspastage.orchestrator import resolve_profiles
from kaspastage.commands.utils import fail


@click.command()
@click.argument("profile_ids", nargs=-1, required=True)
def validate(profile_ids: tuple[str, ...]):
    """Check that a set of profiles can be installed together."""
    try:
        resolution = resolve_profiles(load_registry(), profile_ids)
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    click.echo(f"✅ Valid profile set: {', '.join(resolution.profiles)}")
    if resolution.added:
        click.echo(f"   Added as required: {', '.join(resolution.added)}")
    for profile_id, fallback in resolution.fallbacks.items():
        click.echo(f"   Fallback for {profile_id}: {fallback.id} - {fallback.message}")
