"""Tests for Pydantic contracts."""

import pytest
from pydantic import ValidationError

from config import AGENT_SCORE_WEIGHTS, CONTEXT_SIGNAL_WEIGHTS, WAVE_WEIGHTS
from contracts import (
    AgentType,
    CapabilityResponse,
    ChainRun,
    Domain,
    GateReport,
    GateResult,
    GateStatus,
    GateStrategy,
    ProjectContext,
    RunStatus,
    ScoringResult,
    SpawnDecision,
    StageId,
    StageOutput,
    UserPreferences,
    WaveDecision,
    WaveStrategy,
    domain_delta,
    weighted_total,
    weights_sum_to_one,
)
from errors import RequiredGateFailure


class TestWeights:
    """Weight tables and weighted totals."""

    @pytest.mark.parametrize("table", [AGENT_SCORE_WEIGHTS, WAVE_WEIGHTS, CONTEXT_SIGNAL_WEIGHTS])
    def test_weight_tables_sum_to_one(self, table):
        assert weights_sum_to_one(table)

    def test_weighted_total_is_clamped(self):
        assert weighted_total({"a": 1.0, "b": 1.0}, {"a": 0.5, "b": 0.5}) == 1.0
        assert weighted_total({"a": 0.0}, {"a": 1.0}) == 0.0

    def test_boundary_total_does_not_drift(self):
        """0.40 + 0.35 + 0.10 must land exactly on 0.85."""
        total = weighted_total(
            {"stage_requirement": 1.0, "content": 1.0, "context": 0.0, "preference": 1.0},
            AGENT_SCORE_WEIGHTS,
        )
        assert total == 0.85

    def test_weights_not_summing_to_one_rejected(self):
        with pytest.raises(ValidationError):
            ScoringResult(
                agent_type=AgentType.BACKEND,
                stage="prd",
                sub_scores={"stage_requirement": 1.0, "content": 0.0, "context": 0.0, "preference": 0.0},
                weights={"stage_requirement": 0.5, "content": 0.35, "context": 0.15, "preference": 0.10},
                total=0.5,
                decision=SpawnDecision.SKIP,
            )

    def test_sub_score_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            WaveDecision(
                sub_scores={k: 1.5 for k in WAVE_WEIGHTS},
                weights=dict(WAVE_WEIGHTS),
                total=1.0,
                multi_wave=True,
                strategy=WaveStrategy.PROGRESSIVE,
            )


class TestProjectContext:
    """Frozen context and per-agent views."""

    def _context(self):
        return ProjectContext(
            root="/tmp/project",
            domain_scores={Domain.FRONTEND: 0.6, Domain.BACKEND: 0.2},
            directory_hits={"components": 1},
            extension_histogram={".tsx": 3},
        )

    def test_context_is_immutable(self):
        context = self._context()
        with pytest.raises(ValidationError):
            context.version = 2

    def test_subset_views_are_independent(self):
        context = self._context()
        first = context.subset_for(Domain.FRONTEND)
        second = context.subset_for(Domain.FRONTEND)
        assert first == second
        assert first.extension_histogram is not second.extension_histogram
        assert first.domain_score == 0.6

    def test_relevant_domains(self):
        assert self._context().relevant_domains() == [Domain.FRONTEND]

    def test_domain_delta_largest_change(self):
        before = self._context()
        after = before.model_copy(update={"domain_scores": {Domain.FRONTEND: 0.6, Domain.BACKEND: 0.5}})
        assert domain_delta(before, after) == pytest.approx(0.3)


class TestUserPreferences:
    def test_weight_precedence(self):
        prefs = UserPreferences(
            preferred_agents=[AgentType.FRONTEND],
            excluded_agents=[AgentType.SECURITY],
            agent_weights={AgentType.FRONTEND: 0.3},
        )
        assert prefs.weight_for(AgentType.FRONTEND) == 0.3
        assert prefs.weight_for(AgentType.SECURITY) == 0.0
        assert prefs.weight_for(AgentType.BACKEND) == 0.5
        assert prefs.is_excluded(AgentType.SECURITY)


class TestGateReport:
    """Blocking semantics of gate results."""

    def _result(self, gate_id, status, required=True):
        return GateResult(gate_id=gate_id, status=status, score=0.5, threshold=0.8, required=required)

    def test_required_failure_blocks(self):
        report = GateReport(stage="trd", strategy=GateStrategy.PARALLEL, results=[
            self._result("completeness", GateStatus.PASSED),
            self._result("security", GateStatus.FAILED),
        ])
        assert not report.passed
        assert [r.gate_id for r in report.blocking] == ["security"]
        with pytest.raises(RequiredGateFailure) as exc_info:
            report.raise_for_blocking()
        assert exc_info.value.failed_gates == ["security"]

    def test_warning_does_not_block(self):
        report = GateReport(stage="prd", strategy=GateStrategy.PARALLEL, results=[
            self._result("structure", GateStatus.WARNING, required=False),
        ])
        assert report.passed
        assert len(report.warnings) == 1

    def test_gate_result_frozen(self):
        result = self._result("completeness", GateStatus.PASSED)
        with pytest.raises(ValidationError):
            result.score = 1.0


class TestChainRun:
    def test_terminal_statuses(self):
        assert RunStatus.COMPLETED.is_terminal
        assert RunStatus.ABORTED.is_terminal
        assert RunStatus.FAILED.is_terminal
        assert not RunStatus.AWAITING_REMEDIATION.is_terminal

    def test_output_lookup(self):
        run = ChainRun(run_id="r1", idea="idea")
        run.stages.append(StageOutput(stage=StageId.IDEA_DEFINITION, content="## Problem"))
        assert run.completed_stages == [StageId.IDEA_DEFINITION]
        assert run.output_for(StageId.IDEA_DEFINITION).content == "## Problem"
        assert run.output_for(StageId.PRD) is None
        assert run.last_output.stage == StageId.IDEA_DEFINITION


class TestCapabilityResponse:
    def test_fallback_marks_confidence_reduced(self):
        degraded = CapabilityResponse(result={"mode": "search_lookup"}, fallback="search_lookup")
        assert degraded.confidence_reduced
        assert degraded.source == "search_lookup"

    def test_structured_score_clamped(self):
        response = CapabilityResponse(result={"score": 1.7}, server_id="s1")
        assert response.structured_score() == 1.0
        assert response.source == "s1"
        assert CapabilityResponse(result="text").structured_score() is None
