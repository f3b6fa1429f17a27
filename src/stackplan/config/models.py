"""Pydantic models for engine configuration."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ExecutionSettings(BaseModel):
    """Execution driver tuning."""
    concurrency: int = Field(default=4, ge=1, description="Maximum in-flight remote operations")
    max_attempts: int = Field(default=3, ge=1, description="Attempts per step before a transient error becomes permanent")
    backoff_base: float = Field(default=0.5, ge=0, description="Initial retry delay in seconds")
    backoff_max: float = Field(default=8.0, ge=0, description="Upper bound for a single retry delay in seconds")


class TypePolicy(BaseModel):
    """Replacement rules for one resource type."""
    immutable_properties: List[str] = Field(default_factory=list, description="Top-level properties whose change forces replacement")
    create_before_destroy: bool = Field(default=False, description="Create the replacement before deleting the original")


class EngineConfig(BaseModel):
    """Complete engine configuration after layering."""
    state_path: str = Field(default=".stackplan/state.json", description="Default state snapshot location")
    remote_path: str = Field(default=".stackplan/remote.json", description="Default simulated control plane store")
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    resource_types: Dict[str, TypePolicy] = Field(default_factory=dict)

    def policy_for(self, resource_type: str) -> TypePolicy:
        """Type policy, or an all-mutable default for unknown types."""
        return self.resource_types.get(resource_type) or TypePolicy()

    def is_immutable(self, resource_type: str, property_name: str) -> bool:
        return property_name in self.policy_for(resource_type).immutable_properties

    def create_before_destroy(self, resource_type: str, override: Optional[bool] = None) -> bool:
        if override is not None:
            return override
        return self.policy_for(resource_type).create_before_destroy
