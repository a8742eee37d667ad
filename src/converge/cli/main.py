"""Main CLI entry point for converge."""

import click
from .commands.plan import plan
from .commands.apply import apply
from .commands.destroy import destroy
from .commands.validate import validate
from .commands.output import output
from .commands.state import state
from .commands.version import version as version_command
from ..utils.logging import get_logger
from .. import __version__

logger = get_logger("cli.main")


@click.group()
@click.version_option(version=__version__, prog_name="converge", message="%(prog)s version %(version)s")
def cli():
    """converge - reconcile layered infrastructure modules with recorded state."""
    pass


cli.add_command(plan)
cli.add_command(apply)
cli.add_command(destroy)
cli.add_command(validate)
cli.add_command(output)
cli.add_command(state)
cli.add_command(version_command)
