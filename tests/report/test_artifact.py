"""Tests for CI/CD artifact generation."""

import json
from datetime import datetime
from pathlib import Path
import pytest
from converge import __version__
from converge.graph.dependency_graph import build_graph
from converge.plan.engine import create_plan
from converge.report.artifact import generate_artifacts
from converge.state.models import StateSnapshot


@pytest.fixture
def change_set(sandbox_spec):
    return create_plan(build_graph(sandbox_spec), StateSnapshot(), "sandbox")


class TestDeterminism:
    """Same ChangeSet produces the same artifacts."""

    def test_plan_json_is_byte_identical(self, change_set, tmp_path):
        generate_artifacts(change_set, tmp_path / "first")
        generate_artifacts(change_set, tmp_path / "second")

        for name in ("plan.json", "summary.json"):
            first = (tmp_path / "first" / name).read_bytes()
            second = (tmp_path / "second" / name).read_bytes()
            assert first == second, f"{name} must be byte-identical"


class TestArtifactIntegrity:
    """All artifact files are written with the expected content."""

    def test_all_files_exist(self, change_set, tmp_path):
        output_dir = tmp_path / "nested" / "artifacts"
        generate_artifacts(change_set, output_dir)
        for filename in ("plan.json", "summary.json", "metadata.json"):
            assert (output_dir / filename).is_file(), f"{filename} must exist"

    def test_plan_json_matches_change_set(self, change_set, tmp_path):
        generate_artifacts(change_set, tmp_path)
        plan = json.loads((tmp_path / "plan.json").read_text())
        assert plan == change_set.model_dump(mode="json")
        assert plan["changes"][0]["address"] == "network.vpc"

    def test_summary_counts(self, change_set, tmp_path):
        generate_artifacts(change_set, tmp_path)
        summary = json.loads((tmp_path / "summary.json").read_text())
        assert summary["environment"] == "sandbox"
        assert summary["has_changes"] is True
        assert summary["create"] == 7
        assert summary["destroy"] == 0

    def test_metadata(self, change_set, tmp_path):
        generate_artifacts(change_set, tmp_path)
        metadata = json.loads((tmp_path / "metadata.json").read_text())
        assert metadata["converge_version"] == __version__
        assert metadata["generator"] == "converge plan"
        datetime.fromisoformat(metadata["generated_at"])
