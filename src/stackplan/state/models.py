"""Pydantic models for the persisted state snapshot."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from ..ingest.models import Lifecycle, ResourceSpec

SNAPSHOT_VERSION = "1"


class ResourceState(BaseModel):
    """Last applied record for one resource."""
    id: str = Field(..., description="Resource identifier")
    type: str = Field(..., description="Resource type tag")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Normalized properties as last applied")
    dependencies: List[str] = Field(default_factory=list, description="Dependency ids as last applied")
    lifecycle: Lifecycle = Field(default_factory=Lifecycle, description="Lifecycle options as last applied")
    physical_id: str = Field(..., description="Identifier assigned by the control plane")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attributes reported by the control plane")

    @classmethod
    def from_spec(cls, spec: ResourceSpec, physical_id: str, attributes: Dict[str, Any]) -> "ResourceState":
        return cls(
            id=spec.id,
            type=spec.type,
            properties=spec.properties,
            dependencies=spec.dependency_ids(),
            lifecycle=spec.lifecycle,
            physical_id=physical_id,
            attributes=attributes,
        )


class StateSnapshot(BaseModel):
    """Durable record of the last successfully applied state."""
    version: str = Field(default=SNAPSHOT_VERSION, description="Snapshot format version")
    serial: int = Field(default=0, ge=0, description="Incremented on every write")
    lineage: Optional[str] = Field(default=None, description="Stable id assigned at first write")
    resources: List[ResourceState] = Field(default_factory=list, description="Applied resources in apply order")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved stack outputs")
    updated_at: Optional[datetime] = Field(default=None, description="Time of last write")

    def get(self, resource_id: str) -> Optional[ResourceState]:
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        return None

    def resource_map(self) -> Dict[str, ResourceState]:
        return {r.id: r for r in self.resources}

    def is_empty(self) -> bool:
        return not self.resources

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
