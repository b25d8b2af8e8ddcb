"""Wave Mode Assessor: single pass vs. checkpointed multi-wave execution.

    wave_score = 0.35 * chain_complexity + 0.25 * agent_coordination
               + 0.20 * implementation_scale + 0.15 * project_context
               + 0.05 * quality_requirements

At wave_score >= wave_threshold (0.7) a stage runs in three waves:
Foundation, Enhancement, Optimization.
"""

import logging
import math
import re
from typing import Dict, List, Optional

from config import settings, WAVE_WEIGHTS, WAVE_PHASE_AGENTS
from contracts import (
    AgentDescriptor,
    ChainRun,
    ChainStage,
    Domain,
    WaveDecision,
    WavePhase,
    WaveStrategy,
    weighted_total,
)

logger = logging.getLogger(__name__)


# Factor -> strategy when that factor contributes most; earlier entries win ties
STRATEGY_BY_FACTOR: Dict[str, WaveStrategy] = {
    "chain_complexity": WaveStrategy.PROGRESSIVE,
    "implementation_scale": WaveStrategy.PROGRESSIVE,
    "project_context": WaveStrategy.CONTEXT_DRIVEN,
    "agent_coordination": WaveStrategy.AGENT_COORDINATED,
    "quality_requirements": WaveStrategy.VALIDATION,
}

WAVE_SEQUENCE: List[WavePhase] = [WavePhase.FOUNDATION, WavePhase.ENHANCEMENT, WavePhase.OPTIMIZATION]

QUALITY_TERMS = ["secure", "security", "compliance", "gdpr", "hipaa", "performance", "accessib", "audit", "sla"]

# Keywords per domain used to count domains an idea touches
IDEA_DOMAIN_TERMS: Dict[Domain, List[str]] = {
    Domain.FRONTEND: ["ui", "frontend", "dashboard", "mobile", "web app", "screen", "component"],
    Domain.BACKEND: ["api", "backend", "database", "service", "integration", "sync"],
    Domain.SECURITY: ["auth", "login", "security", "permission", "encrypt", "privacy"],
    Domain.PERFORMANCE: ["real-time", "realtime", "latency", "scale", "performance", "throughput"],
    Domain.ARCHITECTURE: ["architecture", "microservice", "platform", "distributed", "multi-tenant"],
    Domain.ANALYSIS: ["analytics", "report", "metrics", "insight", "analysis"],
    Domain.DOCUMENTATION: ["documentation", "docs", "guide", "knowledge base"],
}


def _mentions(text: str, term: str) -> bool:
    return re.search(r"(?<![\w])" + re.escape(term), text) is not None


class WaveModeAssessor:
    """Scores run complexity and chooses the execution strategy."""

    def __init__(self, threshold: Optional[float] = None):
        self.threshold = settings.wave_threshold if threshold is None else threshold

    def assess_factors(
        self,
        chain_complexity: float,
        agent_coordination: float,
        implementation_scale: float,
        project_context: float,
        quality_requirements: float,
        context_version: Optional[int] = None,
    ) -> WaveDecision:
        """Apply the wave formula to already-derived factors."""
        sub_scores = {
            "chain_complexity": chain_complexity,
            "agent_coordination": agent_coordination,
            "implementation_scale": implementation_scale,
            "project_context": project_context,
            "quality_requirements": quality_requirements,
        }
        total = weighted_total(sub_scores, WAVE_WEIGHTS)
        multi_wave = settings.meets_threshold(total, self.threshold)
        if multi_wave:
            dominant = max(STRATEGY_BY_FACTOR, key=lambda f: WAVE_WEIGHTS[f] * sub_scores[f])
            strategy = STRATEGY_BY_FACTOR[dominant]
        else:
            strategy = WaveStrategy.SINGLE_PASS
        return WaveDecision(
            sub_scores=sub_scores,
            weights=dict(WAVE_WEIGHTS),
            total=total,
            multi_wave=multi_wave,
            strategy=strategy,
            waves=list(WAVE_SEQUENCE) if multi_wave else [],
            context_version=context_version,
        )

    def assess(self, run: ChainRun, stages: Optional[List[ChainStage]] = None) -> WaveDecision:
        """Derive the five factors from the run and score them."""
        idea = run.idea.lower()
        context = run.context

        words = len(idea.split())
        requirement_lines = len(re.findall(r"^\s*(?:[-*+]|\d+\.)\s+", run.idea, re.MULTILINE))
        requirement_lines += len(re.findall(r"\b(?:must|should|shall|needs? to)\b", idea))
        chain = 0.6 * min(1.0, words / 400) + 0.4 * min(1.0, requirement_lines / 10)

        idea_domains = {d for d, terms in IDEA_DOMAIN_TERMS.items() if any(_mentions(idea, t) for t in terms)}
        context_domains = set(context.relevant_domains()) if context else set()
        agents = min(1.0, len(idea_domains | context_domains) / 4)

        scale = 0.0
        breadth = 0.0
        if context is not None:
            scale = min(1.0, math.log10(context.files_scanned + 1) / 3)
            active = sum(1 for s in context.domain_scores.values() if s > 0)
            breadth = 0.7 * active / len(Domain) + 0.3 * min(1.0, len(context.framework_hits) / 5)

        required_gates = {g for stage in stages or [] for g in stage.required_gates}
        quality_hits = sum(1 for t in QUALITY_TERMS if _mentions(idea, t))
        quality = min(1.0, len(required_gates) / 6 + 0.1 * quality_hits)

        decision = self.assess_factors(
            round(chain, 10), round(agents, 10), round(scale, 10), round(min(1.0, breadth), 10), round(quality, 10),
            context_version=context.version if context else None,
        )
        logger.info(
            "Wave assessment for run %s: %.3f -> %s",
            run.run_id, decision.total, decision.strategy.value,
        )
        return decision

    @staticmethod
    def distribute(descriptors: List[AgentDescriptor], decision: WaveDecision) -> Dict[WavePhase, List[AgentDescriptor]]:
        """Assign agents to waves. Agents not named in WAVE_PHASE_AGENTS join the first wave."""
        if not decision.multi_wave:
            return {}
        phases: Dict[WavePhase, List[AgentDescriptor]] = {phase: [] for phase in decision.waves}
        first = decision.waves[0]
        for descriptor in descriptors:
            target = first
            for phase in decision.waves:
                if descriptor.agent_type.value in WAVE_PHASE_AGENTS.get(phase.value, []):
                    target = phase
                    break
            phases[target].append(descriptor)
        return phases
