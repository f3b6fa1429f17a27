"""Plan command - build graph, diff against state and print the plan."""

import sys
import click
from ... import plan as plan_core
from ...presentation.human_formatter import format_plan
from ...utils.errors import StackPlanError, CycleError, UnresolvedReferenceError
from ...utils.logging import get_logger
from ..utils import resolve_file_path, format_error, to_json, echo_safe, apply_quiet, EXIT_ERROR

logger = get_logger("cli.plan")


@click.command()
@click.argument('stack_file', type=click.Path(exists=False))
@click.option('--state', 'state_path', type=click.Path(), help='State snapshot file (default from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Additional config YAML')
@click.option('--json', 'as_json', is_flag=True, help='Output the plan as JSON')
@click.option('--hide-unchanged', is_flag=True, help='Omit resources without changes')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def plan(stack_file, state_path, config_path, as_json, hide_unchanged, quiet):
    """
    Show the changes needed to reconcile STACK_FILE with the recorded state.

    Exits 0 when planning succeeds (with or without changes) and 1 on
    validation, reference or cycle errors.
    """
    apply_quiet(quiet)
    try:
        try:
            stack_path = resolve_file_path(stack_file)
        except FileNotFoundError as e:
            click.echo(format_error(str(e)), err=True)
            sys.exit(EXIT_ERROR)

        if not quiet:
            click.echo(f"Planning stack: {stack_path}", err=True)

        context = plan_core(str(stack_path), state_path, config_path)

        if as_json:
            click.echo(to_json(context.plan))
        else:
            echo_safe(format_plan(context.plan, show_noop=not hide_unchanged))

    except (CycleError, UnresolvedReferenceError) as e:
        click.echo(format_error(str(e), "Fix the dependency declarations and re-run plan."), err=True)
        sys.exit(EXIT_ERROR)
    except StackPlanError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Planning failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)
