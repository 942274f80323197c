"""Profiles command implementation."""

import click

from kaspastage.config import ConfigError
from kaspastage.data_loader import load_registry
from kaspastage.errors import OrchestratorError
from kaspastage.commands.utils import fail

CATEGORY_ORDER = ["essential", "optional", "advanced"]


@click.command()
@click.option("--verbose", "-v", is_flag=True, help="Show services, resources and relations")
def profiles(verbose: bool):
    """List available profiles grouped by category."""
    try:
        registry = load_registry()
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    grouped = registry.by_category()
    categories = [c for c in CATEGORY_ORDER if c in grouped]
    categories += sorted(c for c in grouped if c not in CATEGORY_ORDER)

    for category in categories:
        click.echo(f"{category.capitalize()}:")
        for profile in grouped[category]:
            click.echo(f"  {profile.id:<26} {profile.description}")
            if not verbose:
                continue
            services = ", ".join(
                s.name if s.required else f"{s.name} (optional)" for s in profile.services
            )
            click.echo(f"      services: {services}")
            r = profile.resources
            click.echo(f"      resources: {r.cpu:g} CPU, {r.memory:g} GB RAM, {r.disk:g} GB disk")
            if profile.prerequisites:
                click.echo(f"      needs one of: {', '.join(profile.prerequisites)}")
            if profile.conflicts:
                click.echo(f"      conflicts with: {', '.join(profile.conflicts)}")
            if profile.fallback is not None:
                click.echo(f"      fallback: {profile.fallback.id}")
        click.echo("")

    if registry.templates:
        click.echo("Templates:")
        for template in registry.templates:
            click.echo(f"  {template.id:<26} {', '.join(template.profiles)}")
