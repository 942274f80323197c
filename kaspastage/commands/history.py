"""Checkpoint history, undo, restore and prune commands."""

import asyncio

import click

from kaspastage.config import ConfigError
from kaspastage.errors import OrchestratorError
from kaspastage.commands.utils import build_coordinator, fail, load_settings


@click.command()
def history():
    """List checkpoints, oldest first."""
    try:
        checkpoints, head = build_coordinator(load_settings()).history()
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    if not checkpoints:
        click.echo("No checkpoints recorded.")
        return

    for checkpoint in checkpoints:
        marker = "*" if checkpoint.id == head else " "
        profiles = ", ".join(checkpoint.profiles) or "(none)"
        click.echo(
            f"{marker} {checkpoint.id}  {checkpoint.created_at}  {checkpoint.description}"
        )
        click.echo(f"      profiles: {profiles}")


@click.command()
def undo():
    """Restore the state before the last change."""
    try:
        coordinator = build_coordinator(load_settings())
        checkpoint = asyncio.run(coordinator.undo())
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    click.echo(f"↩️  Restored {checkpoint.id}: {checkpoint.description}")


@click.command()
@click.argument("checkpoint_id")
def restore(checkpoint_id: str):
    """Restore a specific checkpoint."""
    try:
        coordinator = build_coordinator(load_settings())
        checkpoint = asyncio.run(coordinator.restore(checkpoint_id))
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    click.echo(f"↩️  Restored {checkpoint.id}: {checkpoint.description}")


@click.command()
@click.option(
    "--keep", type=click.IntRange(min=1), required=True, help="Number of checkpoints to keep"
)
def prune(keep: int):
    """Delete the oldest checkpoints beyond --keep."""
    try:
        coordinator = build_coordinator(load_settings())
        removed = asyncio.run(coordinator.prune(keep))
    except (ConfigError, OrchestratorError) as e:
        fail(e)

    click.echo(f"Pruned {len(removed)} checkpoint(s).")
