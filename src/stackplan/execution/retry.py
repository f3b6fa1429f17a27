"""Bounded retry with exponential backoff for remote calls."""

import time
from typing import Callable, Optional, TypeVar
from tenacity import (
    Retrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from ..config.models import ExecutionSettings
from ..utils.errors import TransientRemoteError, RetriesExhaustedError
from ..utils.logging import get_logger

logger = get_logger("execution.retry")

T = TypeVar("T")


def call_with_retry(
    operation: Callable[[], T],
    settings: ExecutionSettings,
    description: str,
    resource_id: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Call ``operation`` until it succeeds, retrying TransientRemoteError.

    The delay after the n-th failed attempt is
    ``min(backoff_base * 2**(n-1), backoff_max)``. Any other exception
    propagates immediately.

    Raises:
        RetriesExhaustedError: If every one of ``settings.max_attempts`` attempts was transient
    """
    retrying = Retrying(
        retry=retry_if_exception_type(TransientRemoteError),
        stop=stop_after_attempt(settings.max_attempts),
        wait=wait_exponential(multiplier=settings.backoff_base, max=settings.backoff_max),
        sleep=sleep,
        before_sleep=lambda retry_state: logger.warning(
            f"{description}: attempt {retry_state.attempt_number}/{settings.max_attempts} failed "
            f"({retry_state.outcome.exception()}), retrying in {retry_state.next_action.sleep:.2f}s"
        ),
    )

    try:
        return retrying(operation)
    except RetryError as e:
        attempts = e.last_attempt.attempt_number
        cause = e.last_attempt.exception()
        logger.error(f"{description}: giving up after {attempts} attempts: {cause}")
        raise RetriesExhaustedError(
            f"{description} failed after {attempts} attempts: {cause}",
            attempts=attempts,
            resource_ids=[resource_id] if resource_id else None,
        ) from cause
