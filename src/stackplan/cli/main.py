"""Main CLI entry point for stackplan."""

import logging
import click
from .commands.plan import plan
from .commands.apply import apply
from .commands.destroy import destroy
from .commands.show import show
from .commands.graph import graph
from .commands.version import version as version_command
from .. import __version__
from ..utils.logging import set_level


@click.group()
@click.version_option(version=__version__, prog_name="stackplan", message="%(prog)s version %(version)s")
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose):
    """stackplan - Declarative resource provisioning."""
    if verbose:
        set_level(logging.DEBUG)


cli.add_command(plan)
cli.add_command(apply)
cli.add_command(destroy)
cli.add_command(show)
cli.add_command(graph)
cli.add_command(version_command)
