"""CLI command definitions for kaspastage."""

import click

from kaspastage import __version__, setup_logging
from kaspastage.commands.history import history, prune, restore, undo
from kaspastage.commands.install import install
from kaspastage.commands.plan import plan
from kaspastage.commands.profiles import profiles
from kaspastage.commands.remove import remove
from kaspastage.commands.validate import validate


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug output for troubleshooting")
@click.version_option(__version__, prog_name="kaspastage")
@click.pass_context
def cli(ctx, debug):
    """Plan, install and roll back Kaspa node profiles."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    setup_logging(debug)


cli.add_command(profiles)
cli.add_command(validate)
cli.add_command(plan)
cli.add_command(install)
cli.add_command(remove)
cli.add_command(history)
cli.add_command(undo)
cli.add_command(restore)
cli.add_command(prune)

__all__ = ["cli"]


if __name__ == "__main__":
    cli()
