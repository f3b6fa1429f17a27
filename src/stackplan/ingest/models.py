"""Pydantic models for declared resources and stack documents."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from .references import RESOURCE_ID_PATTERN, normalize_value, references_by_target


class RemovalPolicy(str, Enum):
    """What happens to the remote resource when it leaves the stack."""
    DESTROY = "destroy"
    RETAIN = "retain"


class Lifecycle(BaseModel):
    """Per-resource lifecycle options."""
    removal_policy: RemovalPolicy = Field(default=RemovalPolicy.DESTROY, description="Delete or keep the remote resource on removal")
    create_before_destroy: Optional[bool] = Field(default=None, description="Override the type policy replacement strategy")

    class Config:
        frozen = True


class ResourceSpec(BaseModel):
    """A single declared resource. Immutable for the duration of a planning pass."""
    id: str = Field(..., description="Identifier, unique within the stack")
    type: str = Field(..., description="Resource type tag")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Property values, literals or references")
    depends_on: List[str] = Field(default_factory=list, description="Explicit dependency identifiers")
    lifecycle: Lifecycle = Field(default_factory=Lifecycle, description="Lifecycle options")

    class Config:
        frozen = True

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not RESOURCE_ID_PATTERN.match(value):
            raise ValueError(f"invalid resource id {value!r}; use letters, digits, '_' or '-' and start with a letter")
        return value

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("resource type must not be empty")
        return value.strip()

    @field_validator("properties", mode="before")
    @classmethod
    def _normalize_properties(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("properties must be a mapping")
        return normalize_value(value)

    @field_validator("depends_on")
    @classmethod
    def _dedupe_depends_on(cls, value: List[str]) -> List[str]:
        seen = []
        for dep in value:
            if dep not in seen:
                seen.append(dep)
        return seen

    def referenced_ids(self) -> List[str]:
        """Resource ids referenced from property values, in first-seen order."""
        return list(references_by_target(self.properties).keys())

    def dependency_ids(self) -> List[str]:
        """Explicit plus implicit dependency ids, deduplicated."""
        deps = list(self.depends_on)
        for ref in self.referenced_ids():
            if ref not in deps:
                deps.append(ref)
        return deps


class OutputSpec(BaseModel):
    """Named stack output."""
    value: Any = Field(..., description="Output value, may contain references")
    description: Optional[str] = Field(default=None, description="Human-readable description")

    @field_validator("value", mode="before")
    @classmethod
    def _normalize_value(cls, value: Any) -> Any:
        return normalize_value(value)


class StackDocument(BaseModel):
    """Parsed stack document - ordered resources plus outputs."""
    version: str = Field(default="1", description="Stack document format version")
    resources: List[ResourceSpec] = Field(default_factory=list, description="Declared resources in declaration order")
    outputs: Dict[str, OutputSpec] = Field(default_factory=dict, description="Stack outputs")
