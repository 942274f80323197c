"""Plan command implementation."""

import click

from kaspastage.config import ConfigError
from kaspastage.data_loader import load_registry
from kaspastage.errors import OrchestratorError
from kaspastage.orchestrator import build_compose_descriptor, render_compose_yaml, render_plan
from kaspastage.commands.utils import (
    build_coordinator,
    fail,
    load_settings,
    resolve_selection,
)


@click.command()
@click.argument("profile_ids", nargs=-1)
@click.option("--template", "-t", "template_id", help="Start from a named template")
@click.option(
    "--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Set a configuration value"
)
@click.option("--compose", is_flag=True, help="Print the service composition descriptor")
def plan(
    profile_ids: tuple[str, ...],
    template_id: str | None,
    assignments: tuple[str, ...],
    compose: bool,
):
    """Show the staged installation plan without changing anything."""
    try:
        user_config = load_settings()
        registry = load_registry()
        selection, values = resolve_selection(
            registry, user_config, profile_ids, template_id, assignments
        )
        prepared = build_coordinator(user_config, registry).prepare(selection, values)
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    if compose:
        descriptor = build_compose_descriptor(prepared.plan, registry)
        click.echo(render_compose_yaml(descriptor), nl=False)
        return

    click.echo(render_plan(prepared.plan, prepared.capacity))
    if not prepared.plan.is_ready():
        click.echo("")
        click.echo("Provide missing values with --set KEY=VALUE before installing.")
