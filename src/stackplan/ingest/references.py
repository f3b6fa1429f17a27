"""Reference syntax: normalize, extract and resolve ``${id.attribute}`` references.

Two forms are accepted in property values:

    "${bucket.bucket_name}"                      whole-value reference
    "s3://${bucket.bucket_name}/athena-results/" interpolated reference
    {"ref": "bucket", "attr": "bucket_name"}     mapping form

The mapping form normalizes to the string form so that property comparison is
structural over resource ids and attribute names, never over runtime values.
"""

import re
from typing import Any, Callable, Dict, List, NamedTuple

REFERENCE_PATTERN = re.compile(r"\$\{([A-Za-z][A-Za-z0-9_-]*)\.([A-Za-z0-9_][A-Za-z0-9_.-]*)\}")
RESOURCE_ID_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

_REF_KEYS = {"ref", "attr"}


class Reference(NamedTuple):
    """A reference found at ``path`` inside a property mapping."""
    path: str
    resource_id: str
    attribute: str


def format_reference(resource_id: str, attribute: str) -> str:
    """Render a reference in its canonical string form."""
    return "${" + f"{resource_id}.{attribute}" + "}"


def normalize_value(value: Any) -> Any:
    """
    Normalize a property value for storage and comparison.

    Mapping-form references become string form, ``None``-valued keys are
    dropped and tuples become lists.

    Raises:
        ValueError: If a reference is malformed
    """
    if isinstance(value, dict):
        if set(value.keys()) == _REF_KEYS:
            target, attr = value["ref"], value["attr"]
            if not isinstance(target, str) or not RESOURCE_ID_PATTERN.match(target):
                raise ValueError(f"invalid reference target: {target!r}")
            if not isinstance(attr, str) or not attr:
                raise ValueError(f"invalid reference attribute: {attr!r}")
            return format_reference(target, attr)
        return {str(k): normalize_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    if isinstance(value, str):
        _check_reference_syntax(value)
    return value


def _check_reference_syntax(text: str) -> None:
    leftover = REFERENCE_PATTERN.sub("", text)
    if "${" in leftover:
        raise ValueError(f"malformed reference in {text!r}; expected ${{<id>.<attribute>}}")


def extract_references(value: Any, path: str = "") -> List[Reference]:
    """Recursively collect references from a normalized value."""
    found: List[Reference] = []

    if isinstance(value, dict):
        for key, item in value.items():
            found.extend(extract_references(item, f"{path}.{key}" if path else key))
    elif isinstance(value, list):
        for idx, item in enumerate(value):
            found.extend(extract_references(item, f"{path}[{idx}]"))
    elif isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            found.append(Reference(path, match.group(1), match.group(2)))

    return found


def resolve_value(value: Any, lookup: Callable[[str, str], Any]) -> Any:
    """
    Substitute references with runtime attribute values.

    A string that is exactly one reference resolves to the raw attribute value
    (keeping its type); references embedded in longer strings are interpolated.

    Args:
        value: Normalized property value
        lookup: Callable ``(resource_id, attribute) -> value``; raises KeyError if unknown
    """
    if isinstance(value, dict):
        return {k: resolve_value(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, lookup) for v in value]
    if isinstance(value, str):
        whole = REFERENCE_PATTERN.fullmatch(value)
        if whole:
            return lookup(whole.group(1), whole.group(2))
        return REFERENCE_PATTERN.sub(lambda m: str(lookup(m.group(1), m.group(2))), value)
    return value


def references_by_target(properties: Dict[str, Any]) -> Dict[str, List[str]]:
    """Map referenced resource id to the top-level property names that carry it."""
    targets: Dict[str, List[str]] = {}
    for ref in extract_references(properties):
        top_level = re.split(r"[.\[]", ref.path, maxsplit=1)[0]
        names = targets.setdefault(ref.resource_id, [])
        if top_level not in names:
            names.append(top_level)
    return targets
