"""Execution driver: apply plans with retries, concurrency and cancellation."""

from .driver import ExecutionDriver
from .models import Outcome, StepResult, ResourceOutcome, ApplyResult
from .retry import call_with_retry

__all__ = [
    "ExecutionDriver",
    "Outcome",
    "StepResult",
    "ResourceOutcome",
    "ApplyResult",
    "call_with_retry",
]
