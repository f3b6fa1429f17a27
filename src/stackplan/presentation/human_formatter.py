"""Human-friendly output formatter - converts plans, results and state to readable text."""

import json
import os
from typing import Dict, List, Optional
from ..diff.models import Plan, ChangeAction
from ..execution.models import ApplyResult, Outcome
from ..graph.dependency_graph import DeploymentGraph
from ..graph.planner import topological_order
from ..state.models import StateSnapshot


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("STACKPLAN_ASCII", "").lower() in ("1", "true", "yes")


def _section(title: str, width: int = 65) -> List[str]:
    """Return section divider."""
    h = "-" * width
    return [h, title.center(width), h]


def _action_symbol(action: ChangeAction, create_before_destroy: bool = False) -> str:
    if action == ChangeAction.REPLACE:
        return "+/-" if create_before_destroy else "-/+"
    return {
        ChangeAction.CREATE: "+",
        ChangeAction.UPDATE: "~",
        ChangeAction.DELETE: "-",
        ChangeAction.NOOP: "=",
    }[action]


def _outcome_symbol(outcome: Outcome, ascii_mode: bool) -> str:
    if ascii_mode:
        return {Outcome.APPLIED: "[ok]", Outcome.FAILED: "[!!]", Outcome.SKIPPED: "[--]"}[outcome]
    return {Outcome.APPLIED: "✓", Outcome.FAILED: "✗", Outcome.SKIPPED: "–"}[outcome]


def plan_summary_line(plan: Plan) -> str:
    counts = plan.summary()
    return (
        f"Plan: {counts['CREATE']} to add, {counts['UPDATE']} to change, "
        f"{counts['REPLACE']} to replace, {counts['DELETE']} to destroy."
    )


def format_plan(plan: Plan, show_noop: bool = True) -> str:
    """
    One line per resource: symbol, action, id, type and reason.

    Args:
        plan: Plan to render
        show_noop: Include unchanged resources

    Returns:
        Multi-line plan report
    """
    lines = _section("EXECUTION PLAN")
    width = max((len(c.resource_id) for c in plan.changes), default=0)

    for change in plan.changes:
        if change.action == ChangeAction.NOOP and not show_noop:
            continue
        symbol = _action_symbol(change.action, change.create_before_destroy)
        lines.append(
            f"  {symbol:<3} {change.action.value.lower():<7} {change.resource_id:<{width}}  "
            f"({change.resource_type}) {change.reason}"
        )

    if not plan.changes:
        lines.append("  No resources declared or recorded.")
    lines.append("")
    lines.append(plan_summary_line(plan) if plan.has_changes() else "No changes. Infrastructure matches the stack.")
    return "\n".join(lines)


def format_apply_result(result: ApplyResult, ascii_mode: Optional[bool] = None) -> str:
    """Per-resource outcome lines followed by resolved outputs."""
    use_ascii = _use_ascii(ascii_mode)
    lines = _section("APPLY RESULT")
    width = max((len(o.resource_id) for o in result.outcomes), default=0)

    for outcome in result.outcomes:
        lines.append(
            f"  {_outcome_symbol(outcome.outcome, use_ascii)} {outcome.outcome.value:<7} "
            f"{outcome.resource_id:<{width}}  {outcome.action.value.lower()}: {outcome.reason}"
        )

    counts: Dict[Outcome, int] = {o: 0 for o in Outcome}
    for outcome in result.outcomes:
        counts[outcome.outcome] += 1
    lines.append("")
    lines.append(
        f"Apply {'cancelled' if result.cancelled else 'complete'}: "
        f"{counts[Outcome.APPLIED]} applied, {counts[Outcome.FAILED]} failed, {counts[Outcome.SKIPPED]} skipped."
    )

    if result.snapshot.outputs:
        lines.append("")
        lines.extend(_format_outputs(result.snapshot.outputs))
    return "\n".join(lines)


def format_snapshot(snapshot: StateSnapshot) -> str:
    """Readable listing of the state snapshot."""
    lines = _section("STATE")
    lines.append(f"Serial: {snapshot.serial}   Lineage: {snapshot.lineage or '-'}")
    if snapshot.updated_at:
        lines.append(f"Updated: {snapshot.updated_at.isoformat()}")
    lines.append("")

    if snapshot.is_empty():
        lines.append("  No resources in state.")
    for resource in snapshot.resources:
        lines.append(f"  {resource.id} ({resource.type})")
        lines.append(f"      physical id: {resource.physical_id}")
        if resource.dependencies:
            lines.append(f"      depends on:  {', '.join(resource.dependencies)}")

    if snapshot.outputs:
        lines.append("")
        lines.extend(_format_outputs(snapshot.outputs))
    return "\n".join(lines)


def format_graph(graph: DeploymentGraph) -> str:
    """Resources in apply order with their direct dependencies."""
    lines = _section("DEPENDENCY ORDER")
    for idx, resource_id in enumerate(topological_order(graph), start=1):
        resource = graph.get(resource_id)
        deps = graph.dependencies_of(resource_id)
        suffix = f"  <- {', '.join(deps)}" if deps else ""
        lines.append(f"  {idx:>3}. {resource_id} ({resource.type}){suffix}")
    return "\n".join(lines)


def _format_outputs(outputs: Dict[str, object]) -> List[str]:
    lines = ["Outputs:"]
    for name, value in outputs.items():
        rendered = value if isinstance(value, str) else json.dumps(value, default=str)
        lines.append(f"  {name} = {rendered}")
    return lines
