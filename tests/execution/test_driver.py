"""Tests for the execution driver."""

import logging
import threading
import pytest
from stackplan.config.models import EngineConfig, ExecutionSettings, TypePolicy
from stackplan.diff.engine import build_plan
from stackplan.diff.models import ChangeAction
from stackplan.execution.driver import ExecutionDriver
from stackplan.execution.models import Outcome
from stackplan.graph.dependency_graph import build_graph
from stackplan.ingest.models import ResourceSpec, OutputSpec, Lifecycle, RemovalPolicy
from stackplan.remote.simulated import SimulatedControlPlane
from stackplan.state.models import StateSnapshot
from stackplan.state.store import StateStore
from stackplan.utils.errors import PermanentRemoteError


CONFIG = EngineConfig(resource_types={"network": TypePolicy(immutable_properties=["zone"])})


@pytest.fixture
def plane():
    return SimulatedControlPlane()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def driver(plane, sleeps):
    settings = ExecutionSettings(concurrency=4, max_attempts=3, backoff_base=0.5, backoff_max=8.0)
    return ExecutionDriver(plane, settings, sleep=sleeps.append)


@pytest.fixture
def chain():
    """vpc <- db <- app, plus an independent log bucket."""
    return [
        ResourceSpec(id="vpc", type="network", properties={"zone": "z1"}),
        ResourceSpec(id="db", type="database", properties={"vpc": "${vpc.id}"}),
        ResourceSpec(id="app", type="service", properties={"db": "${db.arn}"}),
        ResourceSpec(id="log", type="bucket"),
    ]


def _plan(specs, snapshot=None, outputs=None):
    return build_plan(build_graph(specs, outputs), snapshot or StateSnapshot(), CONFIG)


def _outcomes(result):
    return {o.resource_id: o.outcome for o in result.outcomes}


class _RejectingCreates(SimulatedControlPlane):
    """Rejects every create for the listed resource ids."""

    def __init__(self, rejected):
        super().__init__()
        self.rejected = set(rejected)

    def create(self, spec, token):
        if spec.id in self.rejected:
            raise PermanentRemoteError(f"quota exceeded for {spec.id}", resource_ids=[spec.id])
        return super().create(spec, token)


class TestApply:

    def test_creates_dependencies_first_and_resolves_references(self, driver, plane, chain):
        result = driver.apply(_plan(chain))

        assert result.succeeded
        creates = [rid for op, rid in plane.calls if op == "create"]
        assert creates.index("vpc") < creates.index("db") < creates.index("app")
        snapshot = result.snapshot
        assert snapshot.get("db").attributes["vpc"] == snapshot.get("vpc").physical_id
        assert snapshot.get("app").attributes["db"] == snapshot.get("db").attributes["arn"]
        # state keeps the declared form so the next diff compares like with like
        assert snapshot.get("db").properties == {"vpc": "${vpc.id}"}
        assert [r.id for r in snapshot.resources] == ["vpc", "db", "app", "log"]

    def test_second_apply_is_noop(self, driver, plane, chain):
        first = driver.apply(_plan(chain))
        calls_before = len(plane.calls)

        plan = _plan(chain, first.snapshot)
        second = driver.apply(plan, first.snapshot)

        assert all(a == ChangeAction.NOOP for a in plan.actions().values())
        assert plan.steps == []
        assert len(plane.calls) == calls_before
        assert all(o.outcome == Outcome.APPLIED and o.reason == "no changes" for o in second.outcomes)
        assert second.snapshot.resource_map().keys() == first.snapshot.resource_map().keys()

    def test_transient_errors_are_retried_with_backoff(self, driver, plane, sleeps, chain):
        plane.fail("db", "transient", times=2)

        result = driver.apply(_plan(chain))

        assert result.succeeded
        step = next(s for s in result.steps if s.step_id == "db:create")
        assert step.attempts == 3
        assert sleeps == [0.5, 1.0]

    def test_exhausted_retries_fail_and_skip_dependents(self, driver, plane, sleeps, chain):
        plane.fail("db", "transient", times=3)

        result = driver.apply(_plan(chain))

        assert _outcomes(result) == {
            "vpc": Outcome.APPLIED,
            "db": Outcome.FAILED,
            "app": Outcome.SKIPPED,
            "log": Outcome.APPLIED,
        }
        assert result.failed() == ["db"]
        assert "after 3 attempts" in result.outcome_for("db").reason
        assert "dependency db:create failed" in result.outcome_for("app").reason
        assert len(sleeps) == 2
        assert result.snapshot.get("db") is None
        assert result.snapshot.get("log") is not None

    def test_permanent_error_is_not_retried(self, driver, plane, sleeps, chain):
        plane.fail("vpc", "permanent")

        result = driver.apply(_plan(chain))

        step = next(s for s in result.steps if s.step_id == "vpc:create")
        assert step.outcome == Outcome.FAILED
        assert step.attempts == 1
        assert sleeps == []
        assert _outcomes(result)["db"] == Outcome.SKIPPED
        assert _outcomes(result)["app"] == Outcome.SKIPPED
        assert _outcomes(result)["log"] == Outcome.APPLIED
        assert not result.succeeded

    def test_unresolvable_attribute_fails_step(self, driver, plane):
        specs = [
            ResourceSpec(id="vpc", type="network"),
            ResourceSpec(id="db", type="database", properties={"port": "${vpc.port}"}),
        ]

        result = driver.apply(_plan(specs))

        assert _outcomes(result) == {"vpc": Outcome.APPLIED, "db": Outcome.FAILED}
        assert "cannot resolve reference ${vpc.port}" in result.outcome_for("db").reason
        assert ("create", "db") not in plane.calls

    def test_concurrency_is_bounded(self, sleeps):
        plane = SimulatedControlPlane(latency=0.05)
        driver = ExecutionDriver(plane, ExecutionSettings(concurrency=2), sleep=sleeps.append)
        specs = [ResourceSpec(id=f"bucket{i}", type="bucket") for i in range(6)]

        result = driver.apply(_plan(specs))

        assert result.succeeded
        assert len(plane.calls) == 6
        assert plane.max_in_flight == 2

    def test_cancel_before_start_skips_everything(self, driver, plane, chain):
        event = threading.Event()
        event.set()

        result = driver.apply(_plan(chain), cancel_event=event)

        assert result.cancelled
        assert not result.succeeded
        assert plane.calls == []
        assert all(s.outcome == Outcome.SKIPPED and s.error == "cancelled" for s in result.steps)

    def test_cancel_lets_in_flight_step_finish(self, sleeps):
        event = threading.Event()

        class CancellingPlane(SimulatedControlPlane):
            def create(self, spec, token):
                result = super().create(spec, token)
                event.set()
                return result

        plane = CancellingPlane()
        driver = ExecutionDriver(plane, ExecutionSettings(concurrency=1), sleep=sleeps.append)
        specs = [
            ResourceSpec(id="a", type="bucket"),
            ResourceSpec(id="b", type="bucket", depends_on=["a"]),
        ]

        result = driver.apply(_plan(specs), cancel_event=event)

        assert result.cancelled
        assert _outcomes(result) == {"a": Outcome.APPLIED, "b": Outcome.SKIPPED}
        assert [r.id for r in result.snapshot.resources] == ["a"]

    def test_replacement_deletes_then_creates_then_updates_dependent(self, driver, plane, sleeps):
        specs = [
            ResourceSpec(id="A", type="network", properties={"zone": "z1"}),
            ResourceSpec(id="B", type="service", properties={"network": "${A.id}"}),
        ]
        first = driver.apply(_plan(specs))
        old_a = first.snapshot.get("A").physical_id
        del plane.calls[:]
        driver = ExecutionDriver(plane, sleep=sleeps.append)

        changed = [specs[0].model_copy(update={"properties": {"zone": "z2"}}), specs[1]]
        result = driver.apply(_plan(changed, first.snapshot), first.snapshot)

        assert result.succeeded
        assert plane.calls == [("delete", "A"), ("create", "A"), ("update", "B")]
        new_a = result.snapshot.get("A").physical_id
        assert new_a != old_a
        assert not plane.exists(old_a)
        assert result.snapshot.get("B").attributes["network"] == new_a

    def test_failed_create_after_delete_drops_resource_from_state(self, sleeps):
        specs = [
            ResourceSpec(id="A", type="network", properties={"zone": "z1"}),
            ResourceSpec(id="B", type="service", properties={"network": "${A.id}"}),
        ]
        setup = ExecutionDriver(SimulatedControlPlane(), sleep=sleeps.append)
        first = setup.apply(_plan(specs))

        plane = _RejectingCreates(["A"])
        driver = ExecutionDriver(plane, sleep=sleeps.append)
        changed = [specs[0].model_copy(update={"properties": {"zone": "z2"}}), specs[1]]

        result = driver.apply(_plan(changed, first.snapshot), first.snapshot)

        assert _outcomes(result) == {"A": Outcome.FAILED, "B": Outcome.SKIPPED}
        assert result.snapshot.get("A") is None
        assert result.snapshot.get("B").physical_id == first.snapshot.get("B").physical_id

    def test_dependent_follows_resource_recreated_after_failed_replacement(self, sleeps):
        specs = [
            ResourceSpec(id="A", type="network", properties={"zone": "z1"}),
            ResourceSpec(id="B", type="service", properties={"network": "${A.id}"}),
        ]
        changed = [specs[0].model_copy(update={"properties": {"zone": "z2"}}), specs[1]]
        plane = _RejectingCreates([])
        first = ExecutionDriver(plane, sleep=sleeps.append).apply(_plan(specs))

        plane.rejected = {"A"}
        failed = ExecutionDriver(plane, sleep=sleeps.append).apply(_plan(changed, first.snapshot), first.snapshot)
        assert failed.snapshot.get("A") is None

        plane.rejected = set()
        plan = _plan(changed, failed.snapshot)
        result = ExecutionDriver(plane, sleep=sleeps.append).apply(plan, failed.snapshot)

        assert plan.actions() == {"A": ChangeAction.CREATE, "B": ChangeAction.UPDATE}
        assert result.succeeded
        new_a = result.snapshot.get("A").physical_id
        assert result.snapshot.get("B").attributes["network"] == new_a
        assert result.snapshot.get("B").physical_id == first.snapshot.get("B").physical_id

    def test_create_before_destroy_keeps_new_resource_when_old_delete_fails(self, plane, sleeps, caplog):
        config = EngineConfig(resource_types={
            "role": TypePolicy(immutable_properties=["name"], create_before_destroy=True),
        })
        specs = [ResourceSpec(id="role", type="role", properties={"name": "v1"})]
        first = ExecutionDriver(plane, sleep=sleeps.append).apply(build_plan(build_graph(specs), StateSnapshot(), config))
        old_id = first.snapshot.get("role").physical_id

        class RejectingDeletes(SimulatedControlPlane):
            def delete(self, physical_id, token):
                raise PermanentRemoteError(f"{physical_id} is in use")

        changed = [specs[0].model_copy(update={"properties": {"name": "v2"}})]
        driver = ExecutionDriver(RejectingDeletes(), sleep=sleeps.append)
        with caplog.at_level(logging.WARNING, logger="stackplan"):
            result = driver.apply(build_plan(build_graph(changed), first.snapshot, config), first.snapshot)

        assert _outcomes(result) == {"role": Outcome.FAILED}
        new_id = result.snapshot.get("role").physical_id
        assert new_id != old_id
        assert result.snapshot.get("role").properties == {"name": "v2"}
        assert old_id in caplog.text

    def test_destroy_deletes_dependents_first(self, driver, plane, chain):
        first = driver.apply(_plan(chain))
        del plane.calls[:]

        result = driver.apply(_plan([], first.snapshot), first.snapshot)

        assert result.succeeded
        deletes = [rid for op, rid in plane.calls if op == "delete"]
        assert deletes.index("app") < deletes.index("db") < deletes.index("vpc")
        assert plane.resource_ids() == []
        assert result.snapshot.resources == []

    def test_retained_resource_is_only_forgotten(self, driver, plane):
        specs = [ResourceSpec(id="trail", type="trail", lifecycle=Lifecycle(removal_policy=RemovalPolicy.RETAIN))]
        first = driver.apply(_plan(specs))
        physical_id = first.snapshot.get("trail").physical_id

        result = driver.apply(_plan([], first.snapshot), first.snapshot)

        assert result.succeeded
        assert plane.exists(physical_id)
        assert result.snapshot.get("trail") is None

    def test_outputs_resolved_after_apply(self, driver):
        specs = [ResourceSpec(id="bucket", type="bucket")]
        outputs = {
            "url": OutputSpec(value="s3://${bucket.id}/data"),
            "missing": OutputSpec(value="${bucket.endpoint}"),
        }

        result = driver.apply(_plan(specs, outputs=outputs))

        bucket_id = result.snapshot.get("bucket").physical_id
        assert result.snapshot.outputs == {"url": f"s3://{bucket_id}/data"}

    def test_state_checkpointed_after_each_step(self, plane, sleeps, chain, tmp_path):
        store = StateStore(tmp_path / "state.json")
        driver = ExecutionDriver(plane, state_store=store, sleep=sleeps.append)

        result = driver.apply(_plan(chain))

        # one write per applied step plus the final write
        assert result.snapshot.serial == len(chain) + 1
        loaded = store.load()
        assert loaded.serial == result.snapshot.serial
        assert loaded.lineage == result.snapshot.lineage
        assert [r.id for r in loaded.resources] == [r.id for r in result.snapshot.resources]


class TestIdempotencyToken:

    def test_token_is_stable_per_step(self, plane):
        driver = ExecutionDriver(plane, run_id="run-1")
        assert driver.idempotency_token("a:create") == driver.idempotency_token("a:create")
        assert driver.idempotency_token("a:create") != driver.idempotency_token("a:delete")

    def test_token_differs_between_runs(self, plane):
        first = ExecutionDriver(plane, run_id="run-1")
        second = ExecutionDriver(plane, run_id="run-2")
        assert first.idempotency_token("a:create") != second.idempotency_token("a:create")
