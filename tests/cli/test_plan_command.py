"""Tests for plan and graph CLI commands."""

import json
from pathlib import Path
import pytest
from click.testing import CliRunner
from stackplan.cli.main import cli


STACK = """
version: 1
resources:
  - id: vpc
    type: aws_ec2_vpc
    properties:
      cidr_block: 10.0.0.0/16
  - id: db
    type: aws_rds_instance
    properties:
      network: ${vpc.id}
      storage: 20
"""

CYCLE = """
resources:
  - id: a
    type: t
    depends_on: [b]
  - id: b
    type: t
    depends_on: [a]
"""


@pytest.fixture
def runner():
    return CliRunner()


class TestPlanCommand:
    """Test plan CLI command."""

    def test_plan_new_stack(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(STACK)
            result = runner.invoke(cli, ['plan', 'stack.yaml'])

            assert result.exit_code == 0
            assert "EXECUTION PLAN" in result.output
            assert "Plan: 2 to add, 0 to change, 0 to replace, 0 to destroy." in result.output
            # planning never writes state
            assert not Path(".stackplan/state.json").exists()

    def test_plan_json_output(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(STACK)
            result = runner.invoke(cli, ['plan', 'stack.yaml', '--json', '--quiet'])

            assert result.exit_code == 0
            data = json.loads(result.output)
            assert [c["action"] for c in data["changes"]] == ["CREATE", "CREATE"]
            assert [s["step_id"] for s in data["steps"]] == ["vpc:create", "db:create"]

    def test_plan_cycle_exits_nonzero(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(CYCLE)
            result = runner.invoke(cli, ['plan', 'stack.yaml'])

            assert result.exit_code == 1
            assert "Dependency cycle detected" in result.output

    def test_plan_unresolved_reference_exits_nonzero(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(
                "resources:\n  - id: db\n    type: t\n    properties:\n      vpc: ${vpc.id}\n"
            )
            result = runner.invoke(cli, ['plan', 'stack.yaml'])

            assert result.exit_code == 1
            assert "vpc" in result.output

    def test_plan_invalid_stack_exits_nonzero(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text("resources:\n  - id: db\n")
            result = runner.invoke(cli, ['plan', 'stack.yaml'])

            assert result.exit_code == 1
            assert "type" in result.output

    def test_plan_missing_file(self, runner):
        result = runner.invoke(cli, ['plan', 'nonexistent.yaml'])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_plan_after_apply_shows_replacement(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(STACK)
            assert runner.invoke(cli, ['apply', 'stack.yaml', '--quiet']).exit_code == 0

            Path("stack.yaml").write_text(STACK.replace("10.0.0.0/16", "10.1.0.0/16"))
            result = runner.invoke(cli, ['plan', 'stack.yaml'])

            assert result.exit_code == 0
            assert "immutable property changed: cidr_block" in result.output
            assert "dependency replaced: vpc" in result.output
            assert "Plan: 0 to add, 1 to change, 1 to replace, 0 to destroy." in result.output


class TestGraphCommand:
    """Test graph CLI command."""

    def test_graph_lists_apply_order(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(STACK)
            result = runner.invoke(cli, ['graph', 'stack.yaml'])

            assert result.exit_code == 0
            assert "DEPENDENCY ORDER" in result.output
            assert result.output.index("vpc (aws_ec2_vpc)") < result.output.index("db (aws_rds_instance)")
            assert "<- vpc" in result.output

    def test_graph_cycle(self, runner):
        with runner.isolated_filesystem():
            Path("stack.yaml").write_text(CYCLE)
            result = runner.invoke(cli, ['graph', 'stack.yaml'])
            assert result.exit_code == 1


def test_version_command(runner):
    result = runner.invoke(cli, ['version'])
    assert result.exit_code == 0
    assert "stackplan version" in result.output
