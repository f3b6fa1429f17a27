"""Compare the desired graph with the last applied snapshot and build a plan."""

import re
import networkx as nx
from typing import Any, Dict, List, Optional
from .models import ChangeAction, StepOperation, ResourceChange, PlanStep, Plan
from ..config.models import EngineConfig
from ..graph.dependency_graph import DeploymentGraph
from ..graph.planner import topological_order
from ..ingest.models import RemovalPolicy
from ..state.models import StateSnapshot, ResourceState
from ..utils.logging import get_logger

logger = get_logger("diff.engine")


def diff(
    graph: DeploymentGraph,
    snapshot: Optional[StateSnapshot],
    config: Optional[EngineConfig] = None
) -> Dict[str, ResourceChange]:
    """
    Compute a ChangeAction for every resource in the graph or the snapshot.

    Args:
        graph: Desired DeploymentGraph
        snapshot: Last applied snapshot (None or empty for a first run)
        config: Engine config providing per-type immutability rules

    Returns:
        Mapping of resource id to ResourceChange, ordered by rank

    Raises:
        CycleError: If the desired graph contains a cycle
    """
    config = config or EngineConfig()
    snapshot = snapshot or StateSnapshot()
    previous = snapshot.resource_map()
    changes: Dict[str, ResourceChange] = {}

    for rank, resource_id in enumerate(topological_order(graph)):
        spec = graph.get(resource_id)
        old = previous.get(resource_id)
        change = _compare(spec.id, spec.type, spec.properties, old, config, rank)
        if change.action in (ChangeAction.NOOP, ChangeAction.UPDATE):
            change = _cascade_replacements(change, graph, changes, config)
        if change.action == ChangeAction.REPLACE:
            change.create_before_destroy = config.create_before_destroy(
                spec.type, spec.lifecycle.create_before_destroy
            )
        changes[resource_id] = change

    _propagate_create_before_destroy(graph, changes)

    removed = [state for state in snapshot.resources if state.id not in graph]
    next_rank = len(changes)
    for offset, state in enumerate(_reverse_dependency_order(removed)):
        reason = "removed from stack"
        if state.lifecycle.removal_policy == RemovalPolicy.RETAIN:
            reason += " (retained remotely, dropped from state)"
        changes[state.id] = ResourceChange(
            resource_id=state.id,
            resource_type=state.type,
            action=ChangeAction.DELETE,
            reason=reason,
            rank=next_rank + offset,
        )

    counts: Dict[str, int] = {}
    for change in changes.values():
        counts[change.action.value] = counts.get(change.action.value, 0) + 1
    logger.info(f"Diff complete: {counts}")
    return changes


def build_plan(
    graph: DeploymentGraph,
    snapshot: Optional[StateSnapshot],
    config: Optional[EngineConfig] = None
) -> Plan:
    """
    Diff the graph against the snapshot and expand changes into ordered steps.

    Replacements expand into a delete and a create step. Dependents are applied
    only after the create completes; with create-before-destroy the old
    resource is deleted only after its dependents moved over.

    Raises:
        CycleError: If the desired graph contains a cycle
    """
    snapshot = snapshot or StateSnapshot()
    changes = diff(graph, snapshot, config)
    previous = snapshot.resource_map()

    step_graph = nx.DiGraph()
    apply_steps: Dict[str, str] = {}
    delete_steps: Dict[str, str] = {}

    def add_step(resource_id: str, operation: StepOperation, rank: int, forget: bool = False) -> str:
        step_id = f"{resource_id}:{operation.value}"
        step_graph.add_node(step_id, rank=rank, resource_id=resource_id, operation=operation, forget=forget)
        return step_id

    for change in changes.values():
        rid = change.resource_id
        base = change.rank * 2
        if change.action == ChangeAction.CREATE:
            apply_steps[rid] = add_step(rid, StepOperation.CREATE, base)
        elif change.action == ChangeAction.UPDATE:
            apply_steps[rid] = add_step(rid, StepOperation.UPDATE, base)
        elif change.action == ChangeAction.DELETE:
            delete_steps[rid] = add_step(rid, StepOperation.DELETE, base, _is_retained(previous[rid]))
        elif change.action == ChangeAction.REPLACE:
            forget = _is_retained(previous[rid])
            if change.create_before_destroy:
                apply_steps[rid] = add_step(rid, StepOperation.CREATE, base)
                delete_steps[rid] = add_step(rid, StepOperation.DELETE, base + 1, forget)
                step_graph.add_edge(apply_steps[rid], delete_steps[rid])
            else:
                delete_steps[rid] = add_step(rid, StepOperation.DELETE, base, forget)
                apply_steps[rid] = add_step(rid, StepOperation.CREATE, base + 1)
                step_graph.add_edge(delete_steps[rid], apply_steps[rid])

    # Desired dependencies: a dependency's new version exists before its dependents are applied.
    for rid, step_id in apply_steps.items():
        for dep_step in _nearest_apply_steps(graph, rid, apply_steps):
            step_graph.add_edge(dep_step, step_id)

    # Create-before-destroy: dependents move to the new resource before the old one goes.
    for rid, change in changes.items():
        if change.action == ChangeAction.REPLACE and change.create_before_destroy:
            for dependent in graph.dependents_of(rid):
                if dependent in apply_steps:
                    step_graph.add_edge(apply_steps[dependent], delete_steps[rid])

    # Last applied dependencies: dependents are deleted (or stop using a removed
    # resource) before the resource itself is deleted.
    for rid, delete_step in delete_steps.items():
        change = changes[rid]
        for state in snapshot.resources:
            if state.id == rid or rid not in state.dependencies:
                continue
            if state.id in delete_steps:
                step_graph.add_edge(delete_steps[state.id], delete_step)
            elif state.id in apply_steps and (
                change.action == ChangeAction.DELETE or change.create_before_destroy
            ):
                step_graph.add_edge(apply_steps[state.id], delete_step)

    ordered = topological_order(step_graph)
    rank_of = {step_id: step_graph.nodes[step_id]["rank"] for step_id in ordered}
    steps = []
    for step_id in ordered:
        node = step_graph.nodes[step_id]
        steps.append(PlanStep(
            step_id=step_id,
            resource_id=node["resource_id"],
            operation=node["operation"],
            requires=sorted(step_graph.predecessors(step_id), key=rank_of.get),
            forget=node["forget"],
        ))

    plan = Plan(
        changes=sorted(changes.values(), key=lambda c: c.rank),
        steps=steps,
        desired=[graph.get(rid) for rid in topological_order(graph)],
        outputs=graph.outputs,
    )
    logger.info(f"Plan built: {len(plan.changes)} resources, {len(plan.steps)} steps")
    return plan


def changed_properties(old: Dict[str, Any], new: Dict[str, Any]) -> List[str]:
    """Top-level property names whose normalized values differ."""
    keys = set(old.keys()) | set(new.keys())
    return sorted(k for k in keys if old.get(k) != new.get(k))


def _compare(
    resource_id: str,
    resource_type: str,
    properties: Dict[str, Any],
    old: Optional[ResourceState],
    config: EngineConfig,
    rank: int
) -> ResourceChange:
    def change(action: ChangeAction, reason: str, changed: Optional[List[str]] = None) -> ResourceChange:
        return ResourceChange(
            resource_id=resource_id,
            resource_type=resource_type,
            action=action,
            reason=reason,
            rank=rank,
            changed_properties=changed or [],
        )

    if old is None:
        return change(ChangeAction.CREATE, "new resource")

    changed = changed_properties(old.properties, properties)
    if old.type != resource_type:
        return change(ChangeAction.REPLACE, f"type changed from {old.type} to {resource_type}", changed)

    forcing = [p for p in changed if config.is_immutable(resource_type, p)]
    if forcing:
        return change(ChangeAction.REPLACE, f"immutable {_plural('property', forcing)} changed: {', '.join(forcing)}", changed)
    if changed:
        return change(ChangeAction.UPDATE, f"{_plural('property', changed)} changed: {', '.join(changed)}", changed)
    return change(ChangeAction.NOOP, "no changes")


def _cascade_replacements(
    change: ResourceChange,
    graph: DeploymentGraph,
    changes: Dict[str, ResourceChange],
    config: EngineConfig
) -> ResourceChange:
    """
    Dependents of a replaced or recreated resource receive new inputs.

    Only called for resources that exist in the snapshot, so a dependency
    planned as CREATE was lost from state (for example a replacement whose
    delete succeeded and whose create failed) and will get a new physical id.
    """
    rid = change.resource_id
    renewed = [
        dep for dep in graph.dependencies_of(rid)
        if dep in changes and changes[dep].action in (ChangeAction.REPLACE, ChangeAction.CREATE)
    ]
    if not renewed:
        return change

    for dep in renewed:
        for field in graph.reference_fields(dep, rid):
            top_level = re.split(r"[.\[]", field, maxsplit=1)[0]
            if config.is_immutable(change.resource_type, top_level):
                verb = "replaced" if changes[dep].action == ChangeAction.REPLACE else "recreated"
                return change.model_copy(update={
                    "action": ChangeAction.REPLACE,
                    "reason": f"immutable property {top_level} references {verb} resource {dep}",
                })

    if change.action == ChangeAction.NOOP:
        replaced = [dep for dep in renewed if changes[dep].action == ChangeAction.REPLACE]
        recreated = [dep for dep in renewed if changes[dep].action == ChangeAction.CREATE]
        reasons = []
        if replaced:
            reasons.append(f"{_plural('dependency', replaced)} replaced: {', '.join(replaced)}")
        if recreated:
            reasons.append(f"{_plural('dependency', recreated)} recreated: {', '.join(recreated)}")
        return change.model_copy(update={
            "action": ChangeAction.UPDATE,
            "reason": "; ".join(reasons),
        })
    return change


def _propagate_create_before_destroy(graph: DeploymentGraph, changes: Dict[str, ResourceChange]) -> None:
    """A create-before-destroy replacement forces the same strategy on replaced dependencies."""
    for rid in reversed(list(changes.keys())):
        change = changes[rid]
        if change.action != ChangeAction.REPLACE or not change.create_before_destroy:
            continue
        for dep in graph.upstream_of(rid):
            dep_change = changes.get(dep)
            if dep_change and dep_change.action == ChangeAction.REPLACE and not dep_change.create_before_destroy:
                logger.debug(f"{dep}: create_before_destroy inherited from dependent {rid}")
                dep_change.create_before_destroy = True


def _reverse_dependency_order(states: List[ResourceState]) -> List[ResourceState]:
    """Order removed resources so dependents are deleted before their dependencies."""
    if not states:
        return []
    by_id = {s.id: s for s in states}
    g = nx.DiGraph()
    for idx, state in enumerate(states):
        g.add_node(state.id, rank=idx)
    for state in states:
        for dep in state.dependencies:
            if dep in by_id:
                g.add_edge(dep, state.id)
    return [by_id[rid] for rid in reversed(topological_order(g))]


def _is_retained(state: ResourceState) -> bool:
    return state.lifecycle.removal_policy == RemovalPolicy.RETAIN


def _nearest_apply_steps(graph: DeploymentGraph, resource_id: str, apply_steps: Dict[str, str]) -> List[str]:
    """Apply steps of the closest dependencies that have one, looking through unchanged resources."""
    found: List[str] = []
    seen = set()
    pending = list(graph.dependencies_of(resource_id))
    while pending:
        dep = pending.pop(0)
        if dep in seen:
            continue
        seen.add(dep)
        if dep in apply_steps:
            if apply_steps[dep] not in found:
                found.append(apply_steps[dep])
        else:
            pending.extend(graph.dependencies_of(dep))
    return found


def _plural(word: str, items: List[str]) -> str:
    if len(items) == 1:
        return word
    return word[:-1] + "ies" if word.endswith("y") else word + "s"
