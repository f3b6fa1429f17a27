"""Validate stack document structure and build the typed StackDocument."""

from typing import Any, Dict, List
from pydantic import ValidationError
from .models import ResourceSpec, OutputSpec, StackDocument
from ..utils.errors import ResourceValidationError
from ..utils.logging import get_logger

logger = get_logger("ingest.stack_validator")

SUPPORTED_VERSIONS = ["1"]
_RESOURCE_KEYS = {"id", "type", "properties", "depends_on", "lifecycle"}


def validate_stack_structure(stack_data: Dict[str, Any]) -> None:
    """
    Validate the top-level shape of a stack document.

    Args:
        stack_data: Parsed stack document

    Raises:
        ResourceValidationError: If the structure is invalid
    """
    if not isinstance(stack_data, dict):
        raise ResourceValidationError("Stack document must be a mapping with a 'resources' list")

    version = str(stack_data.get("version", "1"))
    if version not in SUPPORTED_VERSIONS:
        logger.warning(f"Stack document version '{version}' may not be fully supported")

    resources = stack_data.get("resources", [])
    if not isinstance(resources, list):
        raise ResourceValidationError("'resources' must be a list")

    for idx, entry in enumerate(resources):
        if not isinstance(entry, dict):
            raise ResourceValidationError(f"Resource at index {idx} must be a mapping")
        resource_id = entry.get("id", f"<index {idx}>")
        unknown = sorted(set(entry.keys()) - _RESOURCE_KEYS)
        if unknown:
            raise ResourceValidationError(
                f"Resource '{resource_id}' has unknown fields: {', '.join(unknown)}",
                resource_ids=[str(resource_id)],
            )
        for field in ("id", "type"):
            if field not in entry:
                raise ResourceValidationError(
                    f"Resource '{resource_id}' is missing required field '{field}'",
                    resource_ids=[str(resource_id)],
                )

    outputs = stack_data.get("outputs", {})
    if outputs is not None and not isinstance(outputs, dict):
        raise ResourceValidationError("'outputs' must be a mapping")

    logger.debug("Stack structure validation passed")


def parse_stack(stack_data: Dict[str, Any]) -> StackDocument:
    """
    Build a StackDocument from validated raw data.

    Raises:
        ResourceValidationError: For malformed resources, duplicate ids or self dependencies
    """
    validate_stack_structure(stack_data)

    resources: List[ResourceSpec] = []
    seen_ids = set()
    for idx, entry in enumerate(stack_data.get("resources", [])):
        resource_id = str(entry.get("id"))
        try:
            resource = ResourceSpec(**entry)
        except ValidationError as e:
            raise ResourceValidationError(
                f"Invalid resource '{resource_id}': {_first_error(e)}",
                resource_ids=[resource_id],
            )

        if resource.id in seen_ids:
            raise ResourceValidationError(f"Duplicate resource id '{resource.id}'", resource_ids=[resource.id])
        if resource.id in resource.dependency_ids():
            raise ResourceValidationError(f"Resource '{resource.id}' depends on itself", resource_ids=[resource.id])

        seen_ids.add(resource.id)
        resources.append(resource)

    outputs: Dict[str, OutputSpec] = {}
    for name, raw in (stack_data.get("outputs") or {}).items():
        if not isinstance(raw, dict) or "value" not in raw:
            raw = {"value": raw}
        try:
            outputs[str(name)] = OutputSpec(**raw)
        except ValidationError as e:
            raise ResourceValidationError(f"Invalid output '{name}': {_first_error(e)}")

    return StackDocument(
        version=str(stack_data.get("version", "1")),
        resources=resources,
        outputs=outputs,
    )


def _first_error(error: ValidationError) -> str:
    """Compact a pydantic ValidationError into 'field: message'."""
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message
