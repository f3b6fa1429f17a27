"""Pydantic models for change actions and execution plans."""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from ..ingest.models import ResourceSpec, OutputSpec


class ChangeAction(str, Enum):
    """Per-resource reconciliation action."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REPLACE = "REPLACE"
    DELETE = "DELETE"
    NOOP = "NOOP"


class StepOperation(str, Enum):
    """Remote operation performed by one plan step."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceChange(BaseModel):
    """Action computed for one resource."""
    resource_id: str = Field(..., description="Resource identifier")
    resource_type: str = Field(..., description="Resource type (desired type, or last applied type for deletes)")
    action: ChangeAction = Field(..., description="Reconciliation action")
    reason: str = Field(..., description="Human-readable cause")
    rank: int = Field(..., ge=0, description="Position in planner order")
    changed_properties: List[str] = Field(default_factory=list, description="Top-level properties that differ")
    create_before_destroy: bool = Field(default=False, description="Replacement creates the new resource first")


class PlanStep(BaseModel):
    """One remote operation with its ordering constraints."""
    step_id: str = Field(..., description="Unique step identifier, '<resource>:<operation>'")
    resource_id: str = Field(..., description="Resource the step acts on")
    operation: StepOperation = Field(..., description="Remote operation")
    requires: List[str] = Field(default_factory=list, description="Steps that must be applied first")
    forget: bool = Field(default=False, description="Delete from state only; the remote resource is retained")


class Plan(BaseModel):
    """Ordered reconciliation plan."""
    changes: List[ResourceChange] = Field(default_factory=list, description="Per-resource changes in rank order")
    steps: List[PlanStep] = Field(default_factory=list, description="Remote operations in execution order")
    desired: List[ResourceSpec] = Field(default_factory=list, description="Desired resources in planner order")
    outputs: Dict[str, OutputSpec] = Field(default_factory=dict, description="Desired stack outputs")

    def change_for(self, resource_id: str) -> Optional[ResourceChange]:
        for change in self.changes:
            if change.resource_id == resource_id:
                return change
        return None

    def actions(self) -> Dict[str, ChangeAction]:
        """Mapping of resource id to action, in rank order."""
        return {c.resource_id: c.action for c in self.changes}

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(c.action != ChangeAction.NOOP for c in self.changes)

    def step_index(self) -> Dict[str, PlanStep]:
        return {s.step_id: s for s in self.steps}
