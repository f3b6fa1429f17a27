"""Show command - print the recorded state snapshot."""

import sys
import click
from ...config import load_engine_config
from ...presentation.human_formatter import format_snapshot
from ...state.store import StateStore
from ...utils.errors import StackPlanError
from ..utils import format_error, to_json, echo_safe, EXIT_ERROR


@click.command()
@click.option('--state', 'state_path', type=click.Path(), help='State snapshot file (default from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Additional config YAML')
@click.option('--json', 'as_json', is_flag=True, help='Output the raw snapshot document')
def show(state_path, config_path, as_json):
    """Show resources and outputs recorded in state."""
    try:
        config = load_engine_config(config_path)
        snapshot = StateStore(state_path or config.state_path).load()
    except StackPlanError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    if as_json:
        click.echo(to_json(snapshot))
    else:
        echo_safe(format_snapshot(snapshot))
