"""Pydantic models for execution results."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from ..diff.models import ChangeAction, StepOperation
from ..state.models import StateSnapshot


class Outcome(str, Enum):
    """Final status of a step or resource."""
    APPLIED = "APPLIED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class StepResult(BaseModel):
    """Result of one plan step."""
    step_id: str
    resource_id: str
    operation: StepOperation
    outcome: Outcome
    attempts: int = Field(default=0, ge=0, description="Remote calls made, including retries")
    error: Optional[str] = Field(default=None, description="Failure or skip cause")


class ResourceOutcome(BaseModel):
    """Result for one resource, combining its steps."""
    resource_id: str
    action: ChangeAction
    outcome: Outcome
    reason: str


class ApplyResult(BaseModel):
    """Everything the execution driver reports back."""
    outcomes: List[ResourceOutcome] = Field(default_factory=list)
    steps: List[StepResult] = Field(default_factory=list)
    snapshot: StateSnapshot = Field(..., description="Snapshot after merging applied changes")
    cancelled: bool = Field(default=False)

    def failed(self) -> List[str]:
        return [o.resource_id for o in self.outcomes if o.outcome == Outcome.FAILED]

    def outcome_for(self, resource_id: str) -> Optional[ResourceOutcome]:
        for outcome in self.outcomes:
            if outcome.resource_id == resource_id:
                return outcome
        return None

    @property
    def succeeded(self) -> bool:
        return not self.failed() and not self.cancelled
