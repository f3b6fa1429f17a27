"""Diff engine: desired graph vs. last applied snapshot."""

from .models import ChangeAction, StepOperation, ResourceChange, PlanStep, Plan
from .engine import diff, build_plan, changed_properties

__all__ = [
    "ChangeAction",
    "StepOperation",
    "ResourceChange",
    "PlanStep",
    "Plan",
    "diff",
    "build_plan",
    "changed_properties",
]
