"""CLI utilities package."""

import json
import logging
import signal
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
import click
from pydantic import BaseModel
from ...utils.logging import set_level
from .file_resolver import resolve_file_path

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_RESOURCES_FAILED = 2
EXIT_CANCELLED = 130


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    error = f"Error: {message}"
    if suggestion:
        error += f"\nTip: {suggestion}"
    return error


def to_json(model: BaseModel) -> str:
    """Serialize a pydantic model for machine-readable output."""
    return json.dumps(model.model_dump(mode="json"), indent=2)


def echo_safe(text: str) -> None:
    """Echo text, falling back to ASCII on terminals that cannot encode it."""
    try:
        click.echo(text)
    except UnicodeEncodeError:
        click.echo(text.encode('ascii', errors='replace').decode('ascii'))


def apply_quiet(quiet: bool) -> None:
    """Silence INFO logging for --quiet runs."""
    if quiet:
        set_level(logging.WARNING)


def execution_overrides(concurrency: Optional[int], max_attempts: Optional[int]) -> Dict[str, Any]:
    return {"concurrency": concurrency, "max_attempts": max_attempts}


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """
    Yield an event that is set on the first Ctrl-C.

    In-flight operations finish; a second Ctrl-C interrupts immediately.
    """
    event = threading.Event()

    def handler(signum, frame):
        if event.is_set():
            raise KeyboardInterrupt
        click.echo("Interrupt received: finishing in-flight operations (Ctrl-C again to abort)", err=True)
        event.set()

    try:
        previous = signal.signal(signal.SIGINT, handler)
    except ValueError:
        # signal handlers can only be installed from the main thread
        previous = None
    try:
        yield event
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


__all__ = [
    "resolve_file_path",
    "format_error",
    "to_json",
    "echo_safe",
    "apply_quiet",
    "execution_overrides",
    "cancel_on_interrupt",
    "EXIT_OK",
    "EXIT_ERROR",
    "EXIT_RESOURCES_FAILED",
    "EXIT_CANCELLED",
]
