"""Version command - show stackplan version."""

import click
from ... import __version__


@click.command()
def version():
    """Show stackplan version."""
    click.echo(f"stackplan version {__version__}")
