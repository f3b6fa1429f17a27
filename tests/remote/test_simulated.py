"""Tests for the simulated control plane."""

import json
import pytest
from stackplan.ingest.models import ResourceSpec
from stackplan.remote.simulated import SimulatedControlPlane
from stackplan.utils.errors import TransientRemoteError, PermanentRemoteError


@pytest.fixture
def spec():
    return ResourceSpec(id="bucket", type="aws_s3_bucket", properties={"bucket_name": "raw"})


class TestSimulatedControlPlane:

    def test_create_assigns_physical_id_and_attributes(self, spec):
        plane = SimulatedControlPlane()
        result = plane.create(spec, "t1")

        assert result.physical_id.startswith("bucket-")
        assert result.attributes["id"] == result.physical_id
        assert result.attributes["arn"] == f"arn:sim:aws_s3_bucket:{result.physical_id}"
        assert result.attributes["bucket_name"] == "raw"
        assert plane.exists(result.physical_id)

    def test_create_is_idempotent_per_token(self, spec):
        plane = SimulatedControlPlane()
        first = plane.create(spec, "t1")
        second = plane.create(spec, "t1")
        third = plane.create(spec, "t2")

        assert first.physical_id == second.physical_id
        assert third.physical_id != first.physical_id
        assert plane.resource_ids() == ["bucket", "bucket"]

    def test_update_and_delete(self, spec):
        plane = SimulatedControlPlane()
        created = plane.create(spec, "t1")

        changed = spec.model_copy(update={"properties": {"bucket_name": "raw", "versioned": True}})
        attributes = plane.update(created.physical_id, changed, "t2")
        assert attributes["versioned"] is True

        plane.delete(created.physical_id, "t3")
        assert not plane.exists(created.physical_id)
        # deleting again succeeds
        plane.delete(created.physical_id, "t4")
        assert plane.calls == [("create", "bucket"), ("update", "bucket"), ("delete", "bucket"), ("delete", created.physical_id)]

    def test_update_missing_resource_is_permanent(self, spec):
        plane = SimulatedControlPlane()
        with pytest.raises(PermanentRemoteError, match="not found"):
            plane.update("bucket-gone", spec, "t1")

    def test_injected_failures(self, spec):
        plane = SimulatedControlPlane()
        plane.fail("bucket", "transient", times=1)
        plane.fail("bucket", "permanent", times=1)

        with pytest.raises(TransientRemoteError):
            plane.create(spec, "t1")
        with pytest.raises(PermanentRemoteError):
            plane.create(spec, "t1")
        assert plane.create(spec, "t1").physical_id
        assert plane.calls == [("create", "bucket")]
        assert plane.max_in_flight == 1

    def test_unknown_failure_kind(self):
        with pytest.raises(ValueError):
            SimulatedControlPlane().fail("bucket", "flaky")

    def test_persists_to_file(self, spec, tmp_path):
        path = tmp_path / "remote.json"
        first = SimulatedControlPlane(str(path))
        created = first.create(spec, "t1")

        second = SimulatedControlPlane(str(path))
        assert second.exists(created.physical_id)
        assert second.create(spec, "t1").physical_id == created.physical_id

    def test_store_is_replaced_atomically(self, spec, tmp_path):
        path = tmp_path / "plane" / "remote.json"
        plane = SimulatedControlPlane(str(path))
        created = plane.create(spec, "t1")
        plane.delete(created.physical_id, "t2")

        assert [p.name for p in path.parent.iterdir()] == ["remote.json"]
        data = json.loads(path.read_text())
        assert data["resources"] == {}
        assert set(data["tokens"]) == {"t1", "t2"}
