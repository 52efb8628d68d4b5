"""Tests for the run model, status parsing and artifact paths."""

import pytest

from hackhelper.models.run import Artifact, PipelineRun, RunStatus, StepStatus, normalize_relative_path
from hackhelper.schemas.run import RunRecord, WatchSnapshot


class TestStatusParsing:
    @pytest.mark.parametrize("raw,expected", [
        ("completed", RunStatus.COMPLETED),
        ("COMPLETED", RunStatus.COMPLETED),
        ("success", RunStatus.COMPLETED),
        ("canceled", RunStatus.CANCELLED),
        ("in_progress", RunStatus.RUNNING),
        ("FAILED", RunStatus.FAILED),
        ("bogus", None),
        (None, None),
    ])
    def test_run_status(self, raw, expected):
        assert RunStatus.parse(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("success", StepStatus.SUCCESS),
        ("completed", StepStatus.SUCCESS),
        ("suspended", StepStatus.PENDING),
        ("error", StepStatus.FAILED),
        ("running", StepStatus.RUNNING),
        ("paused?", None),
    ])
    def test_step_status(self, raw, expected):
        assert StepStatus.parse(raw) == expected

    def test_terminal_statuses(self):
        terminal = {s for s in RunStatus if s.is_terminal}
        assert terminal == {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.ERROR}


class TestPipelineRun:
    def test_success_is_sticky(self):
        run = PipelineRun(run_id="r1")
        assert run.apply_step("extractBrief", StepStatus.RUNNING)
        assert run.apply_step("extractBrief", StepStatus.SUCCESS)
        assert not run.apply_step("extractBrief", StepStatus.RUNNING)
        assert not run.apply_step("extractBrief", StepStatus.FAILED)
        assert run.step_status("extractBrief") == StepStatus.SUCCESS

    def test_late_output_fills_in_after_success(self):
        run = PipelineRun(run_id="r1")
        run.apply_step("createPlan", StepStatus.SUCCESS)
        run.apply_step("createPlan", StepStatus.RUNNING, output={"projectPlan": "p"})
        assert run.active_steps["createPlan"].output == {"projectPlan": "p"}
        assert run.step_status("createPlan") == StepStatus.SUCCESS

    def test_repeated_status_is_not_a_change(self):
        run = PipelineRun(run_id="r1")
        run.apply_step("parseBrief", StepStatus.RUNNING)
        assert not run.apply_step("parseBrief", StepStatus.RUNNING)

    def test_terminal_run_status_is_final(self):
        run = PipelineRun(run_id="r1")
        assert run.apply_status(RunStatus.RUNNING)
        assert run.apply_status(RunStatus.COMPLETED)
        assert not run.apply_status(RunStatus.RUNNING)
        assert not run.apply_status(RunStatus.FAILED)
        assert run.status == RunStatus.COMPLETED

    def test_unknown_step_has_no_status(self):
        assert PipelineRun(run_id="r1").step_status("nope") is None


class TestArtifactPaths:
    @pytest.mark.parametrize("raw,expected", [
        ("README.md", "README.md"),
        ("./src/index.ts", "src/index.ts"),
        ("src\\app\\main.py", "src/app/main.py"),
        ("src//lib/./util.js", "src/lib/util.js"),
    ])
    def test_normalized(self, raw, expected):
        assert normalize_relative_path(raw) == expected

    @pytest.mark.parametrize("raw", ["", "/etc/passwd", "C:/x.txt", "../up.txt", "a/../../b", "."])
    def test_rejected(self, raw):
        with pytest.raises(ValueError):
            normalize_relative_path(raw)

    def test_artifact_normalizes_and_encodes(self):
        artifact = Artifact(relative_path="./docs/notes.md", content="héllo")
        assert artifact.relative_path == "docs/notes.md"
        assert artifact.data == "héllo".encode("utf-8")

    def test_artifact_rejects_escape(self):
        with pytest.raises(ValueError):
            Artifact(relative_path="../../outside.txt", content=b"x")


class TestWireSchemas:
    def test_snapshot_accepts_pair_list_active_paths(self):
        snapshot = WatchSnapshot.model_validate({
            "runId": "r1",
            "status": "running",
            "activePaths": [["extractBrief", {"status": "success", "stepPath": ["extractBrief"]}]],
            "results": None,
        })
        assert snapshot.active_paths["extractBrief"].status == "success"
        assert snapshot.results == {}

    def test_step_record_files(self):
        record = RunRecord.model_validate({
            "steps": {
                "scaffoldProject": {
                    "status": "success",
                    "output": {"files": [{"path": "a.ts", "content": None}, {"nope": 1}, "junk"]},
                },
                "createPlan": {"status": "success", "output": "plain text"},
            }
        })
        files = record.steps["scaffoldProject"].files()
        assert [(f.path, f.content) for f in files] == [("a.ts", "")]
        assert record.steps["createPlan"].files() is None
