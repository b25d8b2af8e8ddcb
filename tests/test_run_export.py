"""Tests for run summaries and on-disk reports."""

import json

from contracts import RunStatus

from conftest import FakeExecutor, FakeProvider
from test_chain_engine import IDEA, make_engine
from orchestrator import run_summary, save_run


class TestRunExport:
    async def test_completed_run_written(self, tmp_path):
        engine = make_engine()
        run = engine.start_run(IDEA)
        await engine.run_to_completion(run)

        path = save_run(run, tmp_path)

        assert path == tmp_path / run.run_id
        summary = json.loads((path / "run_summary.json").read_text())
        assert summary["status"] == "completed"
        assert summary["completed_stages"] == ["idea_definition", "prd", "trd", "feature_breakdown", "user_story"]
        assert summary["wave"]["multi_wave"] is False
        assert (path / "prd.md").read_text() == run.output_for(run.completed_stages[1]).content
        gate_reports = json.loads((path / "gate_reports.json").read_text())
        assert set(gate_reports) == set(summary["completed_stages"])
        assert not (path / "remediation.json").exists()
        assert json.loads((path / "run.json").read_text())["run_id"] == run.run_id

    async def test_remediation_written(self, tmp_path):
        engine = make_engine(FakeProvider(replies=["plain"]), executor=FakeExecutor())
        run = engine.start_run(IDEA)
        await engine.advance(run)

        path = save_run(run, tmp_path)

        remediation = json.loads((path / "remediation.json").read_text())
        assert remediation["failed_gates"] == ["completeness"]
        assert remediation["pending_content"] == "plain"
        assert run_summary(run)["awaiting_remediation"] == ["completeness"]

    def test_summary_of_aborted_run(self, tmp_path):
        run = make_engine().start_run(IDEA, project_root=str(tmp_path / "missing"))
        summary = run_summary(run)
        assert summary["status"] == RunStatus.ABORTED.value
        assert summary["wave"] is None
        assert summary["diagnostics"]["error_type"] == "ContextAnalysisError"
        assert summary["duration_seconds"] is not None
