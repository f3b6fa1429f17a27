"""Abstract capability interface for remote control planes."""

from abc import ABC, abstractmethod
from typing import Any, Dict
from pydantic import BaseModel, Field
from ..ingest.models import ResourceSpec


class RemoteResult(BaseModel):
    """Outcome of a successful create call."""
    physical_id: str = Field(..., description="Identifier assigned by the control plane")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attributes readable by dependents")


class ControlPlane(ABC):
    """
    Abstract interface for the system that owns the real resources.

    Specs passed in have every reference already resolved to runtime values.
    Every call carries an idempotency token that stays the same across retries
    of the same step, so a call that succeeded remotely but failed to report
    back can be repeated safely.

    Implementations signal failures with:
    - TransientRemoteError: retried with backoff
    - PermanentRemoteError: the step fails and its dependents are skipped
    """

    @abstractmethod
    def create(self, spec: ResourceSpec, token: str) -> RemoteResult:
        """
        Create a resource.

        Args:
            spec: Resolved resource spec
            token: Idempotency token

        Returns:
            RemoteResult with physical id and attributes
        """
        pass

    @abstractmethod
    def update(self, physical_id: str, spec: ResourceSpec, token: str) -> Dict[str, Any]:
        """
        Update a resource in place.

        Returns:
            Refreshed attributes
        """
        pass

    @abstractmethod
    def delete(self, physical_id: str, token: str) -> None:
        """Delete a resource. Deleting a resource that no longer exists succeeds."""
        pass
