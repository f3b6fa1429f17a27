"""Apply command - plan, then execute against the control plane."""

import sys
import click
from ... import plan as plan_core, apply as apply_core
from ...presentation.human_formatter import format_plan, format_apply_result
from ...remote.simulated import SimulatedControlPlane
from ...utils.errors import StackPlanError
from ...utils.logging import get_logger
from ..utils import (
    resolve_file_path,
    format_error,
    to_json,
    echo_safe,
    apply_quiet,
    execution_overrides,
    cancel_on_interrupt,
    EXIT_ERROR,
    EXIT_RESOURCES_FAILED,
    EXIT_CANCELLED,
)

logger = get_logger("cli.apply")


@click.command()
@click.argument('stack_file', type=click.Path(exists=False))
@click.option('--state', 'state_path', type=click.Path(), help='State snapshot file (default from config)')
@click.option('--remote', 'remote_path', type=click.Path(), help='Simulated control plane store (default from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Additional config YAML')
@click.option('--concurrency', type=click.IntRange(min=1), help='Maximum parallel operations')
@click.option('--max-attempts', type=click.IntRange(min=1), help='Attempts per operation on transient errors')
@click.option('--json', 'as_json', is_flag=True, help='Output the apply result as JSON')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def apply(stack_file, state_path, remote_path, config_path, concurrency, max_attempts, as_json, quiet):
    """
    Plan STACK_FILE and apply the changes.

    Exits 1 on planning errors (nothing is changed) and 2 if any resource failed.
    Ctrl-C stops scheduling new operations and lets in-flight ones finish.
    """
    apply_quiet(quiet)
    try:
        try:
            stack_path = resolve_file_path(stack_file)
        except FileNotFoundError as e:
            click.echo(format_error(str(e)), err=True)
            sys.exit(EXIT_ERROR)

        context = plan_core(
            str(stack_path), state_path, config_path,
            execution_overrides(concurrency, max_attempts),
        )
        run_apply(context, remote_path, as_json, quiet)

    except StackPlanError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Apply failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)


def run_apply(context, remote_path, as_json: bool, quiet: bool) -> None:
    """Shared by apply and destroy: print the plan, execute, report, set the exit code."""
    if not quiet and not as_json:
        echo_safe(format_plan(context.plan, show_noop=False))
        click.echo("")

    control_plane = SimulatedControlPlane(remote_path or context.config.remote_path)
    with cancel_on_interrupt() as cancel_event:
        result = apply_core(context, control_plane, cancel_event)

    if as_json:
        click.echo(to_json(result))
    else:
        echo_safe(format_apply_result(result))

    if result.failed():
        sys.exit(EXIT_RESOURCES_FAILED)
    if result.cancelled:
        sys.exit(EXIT_CANCELLED)
