"""stackplan - Declarative resource provisioning engine."""

import threading
from typing import Any, Dict, NamedTuple, Optional
from .config import EngineConfig, load_engine_config
from .diff import Plan, build_plan
from .execution import ApplyResult, ExecutionDriver
from .graph import DeploymentGraph, build_graph
from .ingest import load_stack
from .remote import ControlPlane, SimulatedControlPlane
from .state import StateSnapshot, StateStore
from .utils.logging import setup_logging, get_logger
from .utils.errors import StackPlanError

__version__ = "0.1.0"

__all__ = ["plan", "apply", "plan_destroy", "PlanContext"]

setup_logging()
logger = get_logger("core")


class PlanContext(NamedTuple):
    """Everything produced while planning, needed again to apply."""
    config: EngineConfig
    store: StateStore
    snapshot: StateSnapshot
    graph: DeploymentGraph
    plan: Plan


def plan(
    stack_path: str,
    state_path: Optional[str] = None,
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> PlanContext:
    """
    Load a stack, build its graph and diff it against the stored snapshot.

    Planning never touches the control plane: reference, cycle and validation
    errors surface here before any remote mutation.
    """
    try:
        logger.info(f"Planning stack: {stack_path}")
        config = load_engine_config(config_path, overrides)
        stack = load_stack(stack_path)
        graph = build_graph(stack.resources, stack.outputs)
        store = StateStore(state_path or config.state_path)
        snapshot = store.load()
        result = build_plan(graph, snapshot, config)
        return PlanContext(config, store, snapshot, graph, result)
    except StackPlanError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during planning: {e}", exc_info=True)
        raise StackPlanError(f"Planning failed: {e}") from e


def plan_destroy(
    state_path: Optional[str] = None,
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> PlanContext:
    """Plan deletion of every resource recorded in state."""
    config = load_engine_config(config_path, overrides)
    store = StateStore(state_path or config.state_path)
    snapshot = store.load()
    graph = build_graph([])
    return PlanContext(config, store, snapshot, graph, build_plan(graph, snapshot, config))


def apply(
    context: PlanContext,
    control_plane: Optional[ControlPlane] = None,
    cancel_event: Optional[threading.Event] = None
) -> ApplyResult:
    """
    Execute a planned context and persist the resulting snapshot.

    Args:
        context: Result of plan() or plan_destroy()
        control_plane: Remote backend (defaults to the simulated control plane at config.remote_path)
        cancel_event: Optional event to request cancellation
    """
    if control_plane is None:
        control_plane = SimulatedControlPlane(context.config.remote_path)

    driver = ExecutionDriver(control_plane, context.config.execution, state_store=context.store)
    result = driver.apply(context.plan, context.snapshot, cancel_event=cancel_event)

    if result.failed():
        logger.error(f"Apply finished with failed resources: {', '.join(result.failed())}")
    return result
