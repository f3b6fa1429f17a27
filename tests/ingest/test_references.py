"""Tests for reference normalization, extraction and resolution."""

import pytest
from stackplan.ingest.references import (
    normalize_value,
    extract_references,
    resolve_value,
    references_by_target,
)


ATTRIBUTES = {
    ("bucket", "id"): "bucket-1234",
    ("cluster", "port"): 5439,
}


def _lookup(resource_id, attribute):
    return ATTRIBUTES[(resource_id, attribute)]


class TestNormalize:

    def test_mapping_reference_becomes_string(self):
        assert normalize_value({"ref": "bucket", "attr": "id"}) == "${bucket.id}"

    def test_none_values_dropped_and_tuples_listed(self):
        assert normalize_value({"a": None, "b": (1, 2)}) == {"b": [1, 2]}

    def test_bad_mapping_reference(self):
        with pytest.raises(ValueError, match="invalid reference target"):
            normalize_value({"ref": "9x", "attr": "id"})


class TestExtract:

    def test_paths_of_nested_references(self):
        props = {
            "targets": {"s3": [{"path": "s3://${bucket.id}/raw"}]},
            "port": "${cluster.port}",
        }
        refs = extract_references(props)
        assert [(r.path, r.resource_id, r.attribute) for r in refs] == [
            ("targets.s3[0].path", "bucket", "id"),
            ("port", "cluster", "port"),
        ]

    def test_references_by_target_uses_top_level_names(self):
        props = {"targets": {"s3": ["${bucket.id}"]}, "log": "${bucket.id}/logs"}
        assert references_by_target(props) == {"bucket": ["targets", "log"]}


class TestResolve:

    def test_whole_value_keeps_type(self):
        assert resolve_value("${cluster.port}", _lookup) == 5439

    def test_interpolation(self):
        assert resolve_value({"p": ["s3://${bucket.id}/out"]}, _lookup) == {"p": ["s3://bucket-1234/out"]}

    def test_unknown_attribute_raises_key_error(self):
        with pytest.raises(KeyError):
            resolve_value("${bucket.arn}", _lookup)
