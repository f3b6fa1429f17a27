"""Custom exception classes for stackplan."""

from typing import Iterable, List, Optional


class StackPlanError(Exception):
    """Base exception for all stackplan errors."""

    def __init__(self, message: str, resource_ids: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.resource_ids: List[str] = list(resource_ids or [])


class StackLoadError(StackPlanError):
    """Raised when a stack document cannot be read or parsed."""
    pass


class ConfigError(StackPlanError):
    """Raised when configuration is invalid or missing."""
    pass


class StateError(StackPlanError):
    """Raised when the state snapshot cannot be read or written."""
    pass


class PlanningError(StackPlanError):
    """Base for errors detected before any remote mutation."""
    pass


class ResourceValidationError(PlanningError):
    """Raised when a resource declaration is malformed."""
    pass


class UnresolvedReferenceError(PlanningError):
    """Raised when a reference or explicit dependency names an undeclared resource."""

    def __init__(self, resource_id: str, field: str, target: str):
        super().__init__(
            f"Resource '{resource_id}' field '{field}' references undeclared resource '{target}'",
            resource_ids=[resource_id],
        )
        self.field = field
        self.target = target


class CycleError(PlanningError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle + cycle[:1])}",
            resource_ids=cycle,
        )
        self.cycle = cycle


class RemoteError(StackPlanError):
    """Base for errors reported by the remote control plane."""
    pass


class TransientRemoteError(RemoteError):
    """Retryable remote failure (throttling, timeouts, eventual consistency)."""
    pass


class PermanentRemoteError(RemoteError):
    """Non-retryable remote failure."""
    pass


class RetriesExhaustedError(PermanentRemoteError):
    """Raised when a transient failure persists past the configured attempt limit."""

    def __init__(self, message: str, attempts: int, resource_ids: Optional[Iterable[str]] = None):
        super().__init__(message, resource_ids=resource_ids)
        self.attempts = attempts
