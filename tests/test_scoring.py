"""Tests for the Agent Scoring Engine."""

import warnings

import pytest

from analysis import ContextAnalyzer
from catalog import EngineCatalog
from config import settings, AGENT_PRIORITY
from contracts import (
    AgentPolicy,
    AgentType,
    ChainStage,
    Domain,
    SpawnDecision,
    StageId,
    UserPreferences,
)
from errors import ScoringAmbiguity
from scoring import AgentScoringEngine

from conftest import make_descriptor


def boundary_setup(**policy):
    """A descriptor/stage pair scoring exactly 0.40 + 0.35 + 0.10 = 0.85."""
    descriptor = make_descriptor(AgentType.BACKEND, domain_keywords=["api", "database"])
    stage = ChainStage(
        id=StageId.TRD,
        agent_policy=AgentPolicy(required_agents=[AgentType.BACKEND], **policy),
    )
    prefs = UserPreferences(preferred_agents=[AgentType.BACKEND])
    return descriptor, stage, prefs


class TestBucketBoundaries:
    """Inclusive boundaries at 0.85 and 0.70."""

    def setup_method(self):
        self.engine = AgentScoringEngine([])

    def test_auto_spawn_at_exact_threshold(self):
        decision, ambiguous = self.engine.classify(0.85)
        assert decision == SpawnDecision.AUTO_SPAWN
        assert ambiguous

    def test_suggest_at_exact_threshold(self):
        decision, ambiguous = self.engine.classify(0.70)
        assert decision == SpawnDecision.SUGGEST
        assert ambiguous

    def test_skip_just_below_suggest(self):
        decision, ambiguous = self.engine.classify(0.6999)
        assert decision == SpawnDecision.SKIP
        assert not ambiguous

    def test_exclusive_boundaries_configurable(self, monkeypatch):
        monkeypatch.setattr(settings, "inclusive_boundaries", False)
        decision, _ = self.engine.classify(0.85)
        assert decision == SpawnDecision.SUGGEST


class TestAgentScoringEngine:
    """Sub-scores, decisions and ordering."""

    def test_boundary_score_warns_and_auto_spawns(self):
        descriptor, stage, prefs = boundary_setup()
        engine = AgentScoringEngine([descriptor])
        with pytest.warns(ScoringAmbiguity):
            result = engine.score(stage, "an api backed by a database", None, prefs)[0]
        assert result.total == 0.85
        assert result.decision == SpawnDecision.AUTO_SPAWN
        assert result.ambiguous
        assert result.matched_signals["keywords"] == ["api", "database"]

    def test_excluded_agent_is_skipped(self):
        descriptor, stage, _ = boundary_setup()
        prefs = UserPreferences(excluded_agents=[AgentType.BACKEND])
        result = AgentScoringEngine([descriptor]).score(stage, "api database", None, prefs)[0]
        assert result.preference == 0.0
        assert result.decision == SpawnDecision.SKIP

    def test_stage_threshold_overrides_default(self):
        descriptor, stage, _ = boundary_setup(spawning_threshold=0.5)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ScoringAmbiguity)
            result = AgentScoringEngine([descriptor]).score(stage, "nothing relevant", None)[0]
        assert result.total == pytest.approx(0.45)
        assert result.decision == SpawnDecision.SKIP

        stage = stage.model_copy(update={"agent_policy": AgentPolicy(
            required_agents=[AgentType.BACKEND], spawning_threshold=0.4,
        )})
        result = AgentScoringEngine([descriptor]).score(stage, "nothing relevant", None)[0]
        assert result.decision == SpawnDecision.AUTO_SPAWN

    def test_no_signals_skips(self):
        descriptor = make_descriptor(AgentType.PERFORMANCE, Domain.PERFORMANCE, domain_keywords=["latency"])
        result = AgentScoringEngine([descriptor]).score(ChainStage(id=StageId.PRD), "a todo list", None)[0]
        assert result.sub_scores == {"stage_requirement": 0.0, "content": 0.0, "context": 0.0, "preference": 0.5}
        assert result.decision == SpawnDecision.SKIP

    def test_results_in_priority_order(self):
        catalog = EngineCatalog()
        results = AgentScoringEngine(catalog.agents).score(catalog.get_stage(StageId.PRD), "idea", None)
        assert [r.agent_type.value for r in results] == AGENT_PRIORITY

    def test_scoring_is_deterministic(self, frontend_project):
        catalog = EngineCatalog()
        context = ContextAnalyzer().analyze(str(frontend_project))
        engine = AgentScoringEngine(catalog.agents)
        stage = catalog.get_stage(StageId.TRD)
        first = engine.score(stage, "react component library", context)
        second = engine.score(stage, "react component library", context)
        assert [r.total for r in first] == [r.total for r in second]


class TestScenarioFrontendAutoSpawn:
    """A React project at the TRD stage auto-spawns the frontend agent."""

    def test_frontend_auto_spawned(self, frontend_project):
        catalog = EngineCatalog()
        context = ContextAnalyzer().analyze(str(frontend_project))
        engine = AgentScoringEngine(catalog.agents)

        results = engine.score(catalog.get_stage(StageId.TRD), "component react", context)
        frontend = next(r for r in results if r.agent_type == AgentType.FRONTEND)

        assert frontend.stage_requirement == 1.0
        assert frontend.content == 1.0
        assert frontend.context == 1.0
        assert frontend.total >= 0.85
        assert frontend.decision == SpawnDecision.AUTO_SPAWN
        assert "components" in frontend.matched_signals["directories"]
        assert ".tsx" in frontend.matched_signals["extensions"]
        assert frontend in AgentScoringEngine.auto_spawned(results)
