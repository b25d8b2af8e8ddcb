"""Critic gate checker: an LLM reviewer scoring stage output.

Adapted from the critic review loop: the reviewer sees the stage output
and the objections it raised before, returns a JSON verdict, and repeated
objections are filtered by word overlap. The framework caches the result
by input digest, so identical input is reviewed only once.
"""

import json
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from config import settings
from contracts import QualityGate
from providers import InferenceProvider
from .checkers import Checker, CheckResult, GateInput

logger = logging.getLogger(__name__)


class Objection(BaseModel):
    category: str = "general"
    description: str
    severity: str = "minor"  # blocking, major, minor


class CriticVerdict(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    passed: bool = False
    objections: List[Objection] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)


class CriticChecker(Checker):
    """Reviews stage output with an inference provider."""

    name = "critic"
    version = "1"

    SYSTEM_PROMPT = """You are a critical reviewer in a prompt chain that refines product ideas.

Review the stage output below for completeness, internal consistency, and
whether the next stage could build on it without guessing.

## Severity Levels

- BLOCKING: the output cannot be used as input to the next stage.
- MAJOR: significant gaps that should be fixed.
- MINOR: small improvements.

## Rules

- Score the output from 0.0 to 1.0; it passes at {pass_threshold} or above.
- Only raise objections for genuine problems, each with a category and description.
- Do NOT repeat objections listed as previous objections.

## Output Format

Respond with valid JSON only:
{{"score": 0.0, "passed": false, "objections": [{{"category": "...", "description": "...", "severity": "minor"}}], "strengths": ["..."]}}
"""

    def __init__(self, provider: InferenceProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model or settings.critic_model
        self._previous: Dict[str, List[Objection]] = {}

    def _build_review_message(self, gate_input: GateInput, previous: List[Objection]) -> str:
        stage = gate_input.stage
        parts = [
            "# STAGE OUTPUT TO REVIEW\n\n",
            f"Stage: {stage.title or stage.id.value}\n\n" if stage else "",
            f"{gate_input.content}\n",
        ]
        if stage and stage.output_format:
            parts.append(f"\n# EXPECTED SECTIONS\n\n{', '.join(stage.output_format)}\n")
        if previous:
            parts.append("\n# PREVIOUS OBJECTIONS (DO NOT REPEAT)\n\n")
            for i, obj in enumerate(previous, 1):
                parts.append(f"{i}. [{obj.severity.upper()}] {obj.category}: {obj.description}\n")
        return "".join(parts)

    def _parse_verdict(self, response_text: str) -> CriticVerdict:
        text = response_text.strip()

        # Handle markdown code blocks
        if "```json" in text:
            start = text.find("```json") + 7
            end = text.find("```", start)
            text = text[start:end].strip()
        elif "```" in text:
            start = text.find("```") + 3
            end = text.find("```", start)
            text = text[start:end].strip()

        data = json.loads(text)
        for obj in data.get("objections") or []:
            if isinstance(obj.get("severity"), str):
                obj["severity"] = obj["severity"].lower()
        if isinstance(data.get("score"), (int, float)):
            data["score"] = min(1.0, max(0.0, float(data["score"])))
        return CriticVerdict.model_validate(data)

    @staticmethod
    def _similar_descriptions(desc1: str, desc2: str, threshold: float = 0.7) -> bool:
        """Word-overlap (Jaccard) similarity between two objection descriptions."""
        words1 = set(desc1.lower().split())
        words2 = set(desc2.lower().split())
        if not words1 or not words2:
            return False
        return len(words1 & words2) / len(words1 | words2) >= threshold

    def _filter_duplicate_objections(self, new: List[Objection], previous: List[Objection]) -> List[Objection]:
        return [
            obj for obj in new
            if not any(
                obj.category.lower() == prev.category.lower()
                and self._similar_descriptions(obj.description, prev.description)
                for prev in previous
            )
        ]

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        previous = self._previous.get(gate.id, [])
        response = await self.provider.complete(
            system_prompt=self.SYSTEM_PROMPT.format(pass_threshold=gate.threshold),
            user_message=self._build_review_message(gate_input, previous),
            model=self.model,
            max_tokens=settings.max_tokens_per_call,
        )
        try:
            verdict = self._parse_verdict(response.content)
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            logger.warning("Critic returned an unparseable verdict for %s: %s", gate.id, e)
            return CheckResult(0.0, [f"Critic verdict could not be parsed: {e}"])

        objections = self._filter_duplicate_objections(verdict.objections, previous)
        self._previous[gate.id] = previous + objections
        findings = [f"[{o.severity.upper()}] {o.category}: {o.description}" for o in objections]
        return CheckResult(verdict.score, findings)
