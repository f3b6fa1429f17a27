"""Apply a plan against a control plane with bounded concurrency."""

import concurrent.futures
import hashlib
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from .models import Outcome, StepResult, ResourceOutcome, ApplyResult
from .retry import call_with_retry
from ..config.models import ExecutionSettings
from ..diff.models import Plan, PlanStep, ChangeAction, StepOperation
from ..ingest.models import ResourceSpec
from ..ingest.references import resolve_value
from ..remote.base import ControlPlane
from ..state.models import StateSnapshot, ResourceState
from ..state.store import StateStore
from ..utils.errors import RemoteError, RetriesExhaustedError
from ..utils.logging import get_logger

logger = get_logger("execution.driver")

CANCELLED = "cancelled"


class ExecutionDriver:
    """
    Executes plan steps in dependency order.

    The calling thread acts as the coordinator: it decides which steps are
    eligible, resolves references, records results and performs every state
    write. Worker threads only talk to the control plane.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        settings: Optional[ExecutionSettings] = None,
        state_store: Optional[StateStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        run_id: Optional[str] = None
    ):
        self.control_plane = control_plane
        self.settings = settings or ExecutionSettings()
        self.state_store = state_store
        self.sleep = sleep
        self.run_id = run_id or uuid.uuid4().hex

    def idempotency_token(self, step_id: str) -> str:
        """Token shared by every attempt of one step within this run."""
        return hashlib.sha256(f"{self.run_id}:{step_id}".encode("utf-8")).hexdigest()

    def apply(
        self,
        plan: Plan,
        snapshot: Optional[StateSnapshot] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApplyResult:
        """
        Execute the plan and merge completed changes into the snapshot.

        Args:
            plan: Plan from build_plan
            snapshot: Snapshot the plan was computed against
            cancel_event: Set to stop scheduling new steps; in-flight steps finish

        Returns:
            ApplyResult with per-resource outcomes and the merged snapshot
        """
        snapshot = snapshot or StateSnapshot()
        previous = snapshot.resource_map()
        desired = {spec.id: spec for spec in plan.desired}
        steps = plan.step_index()
        live = self._initial_live_state(plan, previous, desired)

        results: Dict[str, StepResult] = {}
        pending: List[str] = [step.step_id for step in plan.steps]
        in_flight: Dict[concurrent.futures.Future, PlanStep] = {}
        busy: Set[str] = set()
        cancelled = False
        persisted = snapshot

        logger.info(f"Applying {len(pending)} steps (concurrency={self.settings.concurrency}, run {self.run_id[:8]})")

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.settings.concurrency) as executor:
            while pending or in_flight:
                if not cancelled and cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    logger.warning(f"Cancellation requested: {len(pending)} steps not started, waiting for {len(in_flight)} in flight")

                if cancelled:
                    for step_id in pending:
                        results[step_id] = self._skipped(steps[step_id], CANCELLED)
                    pending = []
                else:
                    before = len(pending)
                    for step_id in list(pending):
                        step = steps[step_id]
                        blocked = [r for r in step.requires if r in results and results[r].outcome != Outcome.APPLIED]
                        if blocked:
                            cause = f"dependency {blocked[0]} {results[blocked[0]].outcome.value.lower()}"
                            results[step_id] = self._skipped(step, cause)
                            pending.remove(step_id)
                            logger.info(f"Skipping {step_id}: {cause}")
                            continue
                        if len(in_flight) >= self.settings.concurrency:
                            continue
                        if step.resource_id in busy or not all(r in results for r in step.requires):
                            continue

                        pending.remove(step_id)
                        job = self._prepare(step, desired, previous, live)
                        if isinstance(job, StepResult):
                            results[step_id] = job
                            continue
                        busy.add(step.resource_id)
                        in_flight[executor.submit(job)] = step
                        logger.debug(f"Started {step_id}")

                if not in_flight:
                    if pending and len(pending) == before:
                        raise RuntimeError(f"Plan steps cannot be scheduled: {pending}")
                    continue

                done, _ = concurrent.futures.wait(in_flight, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    step = in_flight.pop(future)
                    busy.discard(step.resource_id)
                    result, payload = future.result()
                    results[step.step_id] = result
                    if result.outcome == Outcome.APPLIED:
                        self._record(step, payload, desired, previous, live)
                        persisted = self._checkpoint(plan, snapshot, persisted, live)

        ordered_results = [results[step.step_id] for step in plan.steps]
        self._warn_orphans(plan, results, previous)
        new_snapshot = self._merge(plan, snapshot, persisted, live)
        if self.state_store is not None:
            new_snapshot = self.state_store.save(new_snapshot)

        outcomes = self._resource_outcomes(plan, ordered_results)
        result = ApplyResult(outcomes=outcomes, steps=ordered_results, snapshot=new_snapshot, cancelled=cancelled)
        failed = result.failed()
        logger.info(
            f"Apply finished: {sum(1 for o in outcomes if o.outcome == Outcome.APPLIED)} applied, "
            f"{len(failed)} failed, {sum(1 for o in outcomes if o.outcome == Outcome.SKIPPED)} skipped"
        )
        return result

    def _initial_live_state(
        self,
        plan: Plan,
        previous: Dict[str, ResourceState],
        desired: Dict[str, ResourceSpec]
    ) -> Dict[str, ResourceState]:
        live = dict(previous)
        for change in plan.changes:
            if change.action == ChangeAction.NOOP and change.resource_id in previous:
                old = previous[change.resource_id]
                live[change.resource_id] = ResourceState.from_spec(
                    desired[change.resource_id], old.physical_id, old.attributes
                )
        return live

    def _prepare(
        self,
        step: PlanStep,
        desired: Dict[str, ResourceSpec],
        previous: Dict[str, ResourceState],
        live: Dict[str, ResourceState]
    ):
        """Build the worker callable for a step, or a StepResult if it cannot start."""
        token = self.idempotency_token(step.step_id)
        description = f"{step.operation.value} {step.resource_id}"

        if step.operation == StepOperation.DELETE:
            physical_id = previous[step.resource_id].physical_id
            if step.forget:
                logger.warning(f"{step.resource_id} ({physical_id}) is retained: removed from state, remote resource kept")
                return lambda: (self._applied(step, 0), None)
            return lambda: self._run(step, description, lambda: self.control_plane.delete(physical_id, token))

        spec = desired[step.resource_id]
        try:
            resolved = spec.model_copy(update={
                "properties": resolve_value(spec.properties, lambda rid, attr: _lookup(live, rid, attr)),
            })
        except KeyError as e:
            message = f"cannot resolve reference {e.args[0]}"
            logger.error(f"{step.step_id} failed: {message}")
            return StepResult(
                step_id=step.step_id,
                resource_id=step.resource_id,
                operation=step.operation,
                outcome=Outcome.FAILED,
                error=message,
            )

        if step.operation == StepOperation.CREATE:
            return lambda: self._run(step, description, lambda: self.control_plane.create(resolved, token))

        physical_id = live[step.resource_id].physical_id
        return lambda: self._run(step, description, lambda: self.control_plane.update(physical_id, resolved, token))

    def _run(self, step: PlanStep, description: str, call: Callable[[], Any]) -> Tuple[StepResult, Any]:
        """Worker body: call the control plane with retries and report a StepResult."""
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            return call()

        try:
            payload = call_with_retry(attempt, self.settings, description, step.resource_id, self.sleep)
        except RetriesExhaustedError as e:
            return self._failed(step, str(e), e.attempts), None
        except RemoteError as e:
            logger.error(f"{description} failed permanently: {e}")
            return self._failed(step, str(e), attempts), None
        except Exception as e:
            logger.error(f"Unexpected error during {description}: {e}", exc_info=True)
            return self._failed(step, f"unexpected error: {e}", attempts), None

        logger.info(f"{description}: done ({attempts} attempt{'s' if attempts != 1 else ''})")
        return self._applied(step, attempts), payload

    def _record(
        self,
        step: PlanStep,
        payload: Any,
        desired: Dict[str, ResourceSpec],
        previous: Dict[str, ResourceState],
        live: Dict[str, ResourceState]
    ) -> None:
        rid = step.resource_id
        if step.operation == StepOperation.DELETE:
            current = live.get(rid)
            if current is not None and current.physical_id == previous[rid].physical_id:
                del live[rid]
        elif step.operation == StepOperation.CREATE:
            live[rid] = ResourceState.from_spec(desired[rid], payload.physical_id, payload.attributes)
        else:
            live[rid] = ResourceState.from_spec(desired[rid], live[rid].physical_id, payload)

    def _checkpoint(
        self,
        plan: Plan,
        snapshot: StateSnapshot,
        persisted: StateSnapshot,
        live: Dict[str, ResourceState]
    ) -> StateSnapshot:
        """Write progress after each applied step so completed work survives an interruption."""
        if self.state_store is None:
            return persisted
        return self.state_store.save(self._merge(plan, snapshot, persisted, live, resolve_outputs=False))

    def _merge(
        self,
        plan: Plan,
        snapshot: StateSnapshot,
        persisted: StateSnapshot,
        live: Dict[str, ResourceState],
        resolve_outputs: bool = True
    ) -> StateSnapshot:
        """Desired resources in planner order first, then leftovers in previous order."""
        resources = [live[spec.id] for spec in plan.desired if spec.id in live]
        placed = {r.id for r in resources}
        resources.extend(r for r in (live.get(s.id) for s in snapshot.resources) if r is not None and r.id not in placed)

        # serial and lineage come from the last write
        merged = persisted.model_copy(update={"resources": resources, "outputs": dict(snapshot.outputs)})
        if resolve_outputs:
            merged.outputs = _resolve_outputs(plan, {r.id: r for r in resources})
        return merged

    def _warn_orphans(self, plan: Plan, results: Dict[str, StepResult], previous: Dict[str, ResourceState]) -> None:
        for change in plan.changes:
            if change.action != ChangeAction.REPLACE or not change.create_before_destroy:
                continue
            created = results.get(f"{change.resource_id}:{StepOperation.CREATE.value}")
            deleted = results.get(f"{change.resource_id}:{StepOperation.DELETE.value}")
            if created and created.outcome == Outcome.APPLIED and deleted and deleted.outcome != Outcome.APPLIED:
                logger.warning(
                    f"{change.resource_id}: replaced, but previous instance {previous[change.resource_id].physical_id} "
                    f"was not deleted ({deleted.error}); remove it manually"
                )

    def _resource_outcomes(self, plan: Plan, step_results: List[StepResult]) -> List[ResourceOutcome]:
        by_resource: Dict[str, List[StepResult]] = {}
        for result in step_results:
            by_resource.setdefault(result.resource_id, []).append(result)

        outcomes = []
        for change in plan.changes:
            results = by_resource.get(change.resource_id, [])
            failed = [r for r in results if r.outcome == Outcome.FAILED]
            skipped = [r for r in results if r.outcome == Outcome.SKIPPED]
            if failed:
                outcome, reason = Outcome.FAILED, f"{failed[0].operation.value} failed: {failed[0].error}"
            elif skipped:
                outcome, reason = Outcome.SKIPPED, f"{skipped[0].operation.value} skipped: {skipped[0].error}"
            elif results:
                outcome, reason = Outcome.APPLIED, change.reason
            else:
                outcome, reason = Outcome.APPLIED, "no changes"
            outcomes.append(ResourceOutcome(
                resource_id=change.resource_id,
                action=change.action,
                outcome=outcome,
                reason=reason,
            ))
        return outcomes

    def _applied(self, step: PlanStep, attempts: int) -> StepResult:
        return StepResult(
            step_id=step.step_id,
            resource_id=step.resource_id,
            operation=step.operation,
            outcome=Outcome.APPLIED,
            attempts=attempts,
        )

    def _failed(self, step: PlanStep, error: str, attempts: int) -> StepResult:
        return StepResult(
            step_id=step.step_id,
            resource_id=step.resource_id,
            operation=step.operation,
            outcome=Outcome.FAILED,
            attempts=attempts,
            error=error,
        )

    def _skipped(self, step: PlanStep, cause: str) -> StepResult:
        return StepResult(
            step_id=step.step_id,
            resource_id=step.resource_id,
            operation=step.operation,
            outcome=Outcome.SKIPPED,
            error=cause,
        )


def _lookup(live: Dict[str, ResourceState], resource_id: str, attribute: str) -> Any:
    state = live.get(resource_id)
    if state is None or attribute not in state.attributes:
        raise KeyError("${" + f"{resource_id}.{attribute}" + "}")
    return state.attributes[attribute]


def _resolve_outputs(plan: Plan, resources: Dict[str, ResourceState]) -> Dict[str, Any]:
    outputs: Dict[str, Any] = {}
    for name, output in plan.outputs.items():
        try:
            outputs[name] = resolve_value(output.value, lambda rid, attr: _lookup(resources, rid, attr))
        except KeyError as e:
            logger.warning(f"Output '{name}' not available: cannot resolve {e.args[0]}")
    return outputs
