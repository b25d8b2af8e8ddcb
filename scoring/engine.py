"""Agent Scoring Engine.

Scores every registered AgentDescriptor for a stage:

    total = 0.40 * stage_requirement + 0.35 * content + 0.15 * context + 0.10 * preference

Each sub-score is a saturating sum of matched signals, min(1, sum(weight * hit)).
The total is bucketed into AUTO_SPAWN / SUGGEST / SKIP.
"""

import logging
import re
import warnings
from typing import Dict, Iterable, List, Optional, Tuple

from config import settings, AGENT_SCORE_WEIGHTS, AGENT_PRIORITY
from contracts import (
    AgentDescriptor,
    ChainStage,
    ProjectContext,
    ScoringResult,
    SpawnDecision,
    UserPreferences,
    weighted_total,
)
from errors import ScoringAmbiguity

logger = logging.getLogger(__name__)


# Signal increments inside each saturating sub-score
REQUIRED_AGENT_HIT = 1.0
OPTIONAL_AGENT_HIT = 0.75
REQUIREMENT_TAG_HIT = 0.25
KEYWORD_HIT = 0.5
FILE_PATTERN_HIT = 0.25
DIRECTORY_HIT = 0.5
EXTENSION_HIT = 0.25


def _saturate(hits: Iterable[float]) -> float:
    return min(1.0, sum(hits))


def _mentions(text: str, term: str) -> bool:
    """Case-insensitive match of term at a word start ('component' matches 'components')."""
    return re.search(r"(?<![\w])" + re.escape(term.lower()), text) is not None


def priority_index(agent_type_value: str) -> int:
    """Position in the fixed descriptor priority ranking; unknown types sort last."""
    try:
        return AGENT_PRIORITY.index(agent_type_value)
    except ValueError:
        return len(AGENT_PRIORITY)


class AgentScoringEngine:
    """Computes spawn-worthiness per agent descriptor for the current stage."""

    def __init__(
        self,
        descriptors: List[AgentDescriptor],
        auto_spawn_threshold: Optional[float] = None,
        suggest_threshold: Optional[float] = None,
    ):
        self.descriptors = sorted(descriptors, key=lambda d: priority_index(d.agent_type.value))
        self.auto_spawn_threshold = (
            settings.auto_spawn_threshold if auto_spawn_threshold is None else auto_spawn_threshold
        )
        self.suggest_threshold = settings.suggest_threshold if suggest_threshold is None else suggest_threshold

    def score(
        self,
        stage: ChainStage,
        content: str,
        context: Optional[ProjectContext],
        user_prefs: Optional[UserPreferences] = None,
    ) -> List[ScoringResult]:
        """Score every registered descriptor, in descriptor-priority order."""
        prefs = user_prefs or UserPreferences()
        results = [self.score_descriptor(d, stage, content, context, prefs) for d in self.descriptors]
        logger.debug(
            "Scored %d agents for %s: %s",
            len(results), stage.id.value,
            ", ".join(f"{r.agent_type.value}={r.total:.3f}/{r.decision.value}" for r in results),
        )
        return results

    def score_descriptor(
        self,
        descriptor: AgentDescriptor,
        stage: ChainStage,
        content: str,
        context: Optional[ProjectContext],
        prefs: UserPreferences,
    ) -> ScoringResult:
        matched: Dict[str, List[str]] = {}
        sub_scores = {
            "stage_requirement": self._stage_requirement(descriptor, stage, matched),
            "content": self._content(descriptor, content, matched),
            "context": self._context(descriptor, context, matched),
            "preference": prefs.weight_for(descriptor.agent_type),
        }
        total = weighted_total(sub_scores, AGENT_SCORE_WEIGHTS)

        auto_threshold = stage.agent_policy.spawning_threshold
        if auto_threshold is None:
            auto_threshold = self.auto_spawn_threshold
        if prefs.is_excluded(descriptor.agent_type):
            decision, ambiguous = SpawnDecision.SKIP, False
        else:
            decision, ambiguous = self.classify(total, auto_threshold)

        if ambiguous:
            message = (
                f"{descriptor.agent_type.value} scored exactly {total} on a bucket boundary "
                f"for {stage.id.value}; resolved as {decision.value}"
            )
            logger.warning(message)
            warnings.warn(message, ScoringAmbiguity, stacklevel=2)

        return ScoringResult(
            agent_type=descriptor.agent_type,
            stage=stage.id.value,
            sub_scores=sub_scores,
            weights=dict(AGENT_SCORE_WEIGHTS),
            total=total,
            decision=decision,
            ambiguous=ambiguous,
            matched_signals=matched,
        )

    def classify(self, total: float, auto_threshold: Optional[float] = None) -> Tuple[SpawnDecision, bool]:
        """Bucket a total. Returns (decision, landed_exactly_on_a_boundary)."""
        auto = self.auto_spawn_threshold if auto_threshold is None else auto_threshold
        total = round(total, 10)
        ambiguous = total in (round(auto, 10), round(self.suggest_threshold, 10))
        if settings.meets_threshold(total, auto):
            return SpawnDecision.AUTO_SPAWN, ambiguous
        if settings.meets_threshold(total, self.suggest_threshold):
            return SpawnDecision.SUGGEST, ambiguous
        return SpawnDecision.SKIP, ambiguous

    def _stage_requirement(self, descriptor: AgentDescriptor, stage: ChainStage, matched: Dict[str, List[str]]) -> float:
        hits = []
        policy = stage.agent_policy
        if descriptor.agent_type in policy.required_agents:
            hits.append(REQUIRED_AGENT_HIT)
            matched["policy"] = ["required"]
        elif descriptor.agent_type in policy.optional_agents:
            hits.append(OPTIONAL_AGENT_HIT)
            matched["policy"] = ["optional"]
        tags = sorted(set(descriptor.stage_tags) & set(stage.requirement_tags))
        if tags:
            matched["requirement_tags"] = tags
        hits.extend(REQUIREMENT_TAG_HIT for _ in tags)
        return _saturate(hits)

    def _content(self, descriptor: AgentDescriptor, content: str, matched: Dict[str, List[str]]) -> float:
        text = content.lower()
        keywords = sorted({kw for kw in descriptor.domain_keywords if _mentions(text, kw)})
        patterns = sorted({p for p in descriptor.file_patterns if p.lower() in text})
        if keywords:
            matched["keywords"] = keywords
        if patterns:
            matched["file_patterns"] = patterns
        return _saturate([KEYWORD_HIT] * len(keywords) + [FILE_PATTERN_HIT] * len(patterns))

    def _context(
        self,
        descriptor: AgentDescriptor,
        context: Optional[ProjectContext],
        matched: Dict[str, List[str]],
    ) -> float:
        if context is None:
            return 0.0
        directories = sorted(d for d in descriptor.dir_patterns if d.lower() in context.directory_hits)
        extensions = sorted(p for p in descriptor.file_patterns if p in context.extension_histogram)
        if directories:
            matched["directories"] = directories
        if extensions:
            matched["extensions"] = extensions
        return _saturate(
            [context.score(descriptor.domain)]
            + [DIRECTORY_HIT] * len(directories)
            + [EXTENSION_HIT] * len(extensions)
        )

    @staticmethod
    def auto_spawned(results: List[ScoringResult]) -> List[ScoringResult]:
        return [r for r in results if r.decision == SpawnDecision.AUTO_SPAWN]

    @staticmethod
    def suggested(results: List[ScoringResult]) -> List[ScoringResult]:
        return [r for r in results if r.decision == SpawnDecision.SUGGEST]
