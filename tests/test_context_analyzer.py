"""Tests for the Context Analyzer."""

import os

import pytest

from analysis import ContextAnalyzer
from contracts import Domain
from errors import ContextAnalysisError


class TestContextAnalyzer:
    """Signal collection and domain scoring."""

    def test_frontend_project_scores_frontend_highest(self, frontend_project):
        context = ContextAnalyzer().analyze(str(frontend_project))
        assert context.version == 1
        assert context.files_scanned == 4
        assert max(context.domain_scores, key=context.domain_scores.get) == Domain.FRONTEND
        assert context.extension_histogram[".tsx"] == 2
        assert "components" in context.directory_hits
        assert "react" in context.framework_hits

    def test_backend_project_detects_frameworks(self, backend_project):
        context = ContextAnalyzer().analyze(str(backend_project))
        assert {"flask", "sqlalchemy"} <= set(context.framework_hits)
        assert context.score(Domain.BACKEND) > context.score(Domain.FRONTEND)
        breakdown = context.signal_breakdown[Domain.BACKEND]
        assert breakdown.directories == 1.0  # api + models
        assert breakdown.imports == 1.0

    def test_scores_within_unit_interval(self, frontend_project):
        context = ContextAnalyzer().analyze(str(frontend_project))
        assert all(0.0 <= s <= 1.0 for s in context.domain_scores.values())

    def test_excluded_directories_skipped(self, frontend_project):
        modules = frontend_project / "node_modules" / "lib"
        modules.mkdir(parents=True)
        (modules / "index.js").write_text("module.exports = {};")
        context = ContextAnalyzer().analyze(str(frontend_project))
        assert "node_modules" not in context.directory_hits
        assert context.files_scanned == 4

    def test_analysis_is_deterministic(self, frontend_project):
        analyzer = ContextAnalyzer()
        first = analyzer.analyze(str(frontend_project))
        second = analyzer.analyze(str(frontend_project))
        assert first.domain_scores == second.domain_scores
        assert first.fingerprint == second.fingerprint

    def test_rederive_bumps_version_and_leaves_previous(self, frontend_project):
        analyzer = ContextAnalyzer()
        first = analyzer.analyze(str(frontend_project))
        (frontend_project / "api").mkdir()
        (frontend_project / "api" / "server.py").write_text("from fastapi import FastAPI\n")
        second = analyzer.rederive(first)
        assert second.version == 2
        assert first.version == 1
        assert "api" not in first.directory_hits
        assert "api" in second.directory_hits
        assert second.fingerprint != first.fingerprint

    def test_max_files_caps_scan(self, frontend_project):
        context = ContextAnalyzer(max_files=2).analyze(str(frontend_project))
        assert context.files_scanned == 2


class TestContextAnalyzerErrors:
    """Missing, invalid and empty roots."""

    def test_missing_root(self, tmp_path):
        with pytest.raises(ContextAnalysisError) as exc_info:
            ContextAnalyzer().analyze(str(tmp_path / "missing"))
        assert exc_info.value.reason == "path does not exist"

    def test_file_as_root(self, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        with pytest.raises(ContextAnalysisError):
            ContextAnalyzer().analyze(str(target))

    def test_empty_root(self, tmp_path):
        with pytest.raises(ContextAnalysisError) as exc_info:
            ContextAnalyzer().analyze(str(tmp_path))
        assert "no readable files" in str(exc_info.value)

    @pytest.mark.skipif(os.name == "nt" or (hasattr(os, "geteuid") and os.geteuid() == 0),
                        reason="permission bits are not enforced")
    def test_unreadable_subdirectory_listed(self, frontend_project):
        locked = frontend_project / "secret"
        locked.mkdir()
        (locked / "keys.txt").write_text("x")
        locked.chmod(0)
        try:
            context = ContextAnalyzer().analyze(str(frontend_project))
        finally:
            locked.chmod(0o755)
        assert "secret" in context.unreadable_paths
