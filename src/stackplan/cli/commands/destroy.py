"""Destroy command - delete every resource recorded in state."""

import sys
import click
from ... import plan_destroy
from ...utils.errors import StackPlanError
from ...utils.logging import get_logger
from ..utils import format_error, apply_quiet, execution_overrides, EXIT_ERROR
from .apply import run_apply

logger = get_logger("cli.destroy")


@click.command()
@click.option('--state', 'state_path', type=click.Path(), help='State snapshot file (default from config)')
@click.option('--remote', 'remote_path', type=click.Path(), help='Simulated control plane store (default from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Additional config YAML')
@click.option('--concurrency', type=click.IntRange(min=1), help='Maximum parallel operations')
@click.option('--max-attempts', type=click.IntRange(min=1), help='Attempts per operation on transient errors')
@click.option('--json', 'as_json', is_flag=True, help='Output the apply result as JSON')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def destroy(state_path, remote_path, config_path, concurrency, max_attempts, as_json, quiet):
    """Delete every resource in state, dependents first."""
    apply_quiet(quiet)
    try:
        context = plan_destroy(state_path, config_path, execution_overrides(concurrency, max_attempts))
        if not context.plan.has_changes():
            click.echo("Nothing to destroy: state is empty.", err=True)
            return
        run_apply(context, remote_path, as_json, quiet)

    except StackPlanError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Destroy failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)
