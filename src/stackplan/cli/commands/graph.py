"""Graph command - print resources in dependency order."""

import sys
import click
from ...graph.dependency_graph import build_graph
from ...ingest.stack_loader import load_stack
from ...presentation.human_formatter import format_graph
from ...utils.errors import StackPlanError
from ..utils import resolve_file_path, format_error, echo_safe, EXIT_ERROR


@click.command()
@click.argument('stack_file', type=click.Path(exists=False))
def graph(stack_file):
    """Print the resources of STACK_FILE in apply order with their dependencies."""
    try:
        stack_path = resolve_file_path(stack_file)
        stack = load_stack(str(stack_path))
        echo_safe(format_graph(build_graph(stack.resources, stack.outputs)))
    except FileNotFoundError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except StackPlanError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
