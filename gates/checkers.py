"""Built-in gate checkers.

Each checker is a pure function of its GateInput (and its own version),
so re-running it on byte-identical input reproduces the same score.
"""

import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agents import extract_regions, normalize_region
from contracts import ChainStage, QualityGate


@dataclass
class GateInput:
    """What a gate validates: stage output plus what it is compared against."""
    content: str
    stage: Optional[ChainStage] = None
    previous_content: str = ""

    def digest_material(self) -> bytes:
        stage_id = self.stage.id.value if self.stage else ""
        return "\x00".join([stage_id, self.content, self.previous_content]).encode("utf-8")


@dataclass
class CheckResult:
    score: float
    findings: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.score = round(min(1.0, max(0.0, self.score)), 10)


class Checker(ABC):
    """Scores content for one gate."""

    name: str = ""
    version: str = "1"

    @abstractmethod
    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        pass


class CompletenessChecker(Checker):
    """Fraction of the stage's required sections present."""

    name = "completeness"

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        if not gate_input.content.strip():
            return CheckResult(0.0, ["Output is empty"])
        required = gate.options.get("sections") or (gate_input.stage.output_format if gate_input.stage else [])
        if not required:
            return CheckResult(1.0)
        present = set(extract_regions(gate_input.content))
        missing = [h for h in required if normalize_region(h) not in present]
        return CheckResult(
            (len(required) - len(missing)) / len(required),
            [f"Missing section: {h}" for h in missing],
        )


class StructureChecker(Checker):
    """Headings, list items and enough body text."""

    name = "structure"
    MIN_WORDS = 150

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        content = gate_input.content
        findings = []
        score = 0.0
        if extract_regions(content):
            score += 0.4
        else:
            findings.append("No section headings")
        if re.search(r"^\s*(?:[-*+]|\d+\.)\s+\S", content, re.MULTILINE):
            score += 0.3
        else:
            findings.append("No list items")
        words = len(content.split())
        min_words = int(gate.options.get("min_words", self.MIN_WORDS))
        score += 0.3 * min(1.0, words / min_words) if min_words else 0.3
        if words < min_words:
            findings.append(f"Only {words} words (expected at least {min_words})")
        return CheckResult(score, findings)


SECRET_PATTERNS: Dict[str, str] = {
    "AWS access key": r"AKIA[0-9A-Z]{16}",
    "private key block": r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----",
    "hardcoded credential": r"(?i)\b(?:password|passwd|secret|api[_-]?key|token)\s*[:=]\s*['\"][^'\"\s]{6,}['\"]",
    "bearer token": r"(?i)bearer\s+[a-z0-9\-_\.]{20,}",
}

UNSAFE_PATTERNS: Dict[str, str] = {
    "dynamic code execution": r"\b(?:eval|exec)\s*\(",
    "disabled TLS verification": r"(?i)verify\s*=\s*false|disable (?:ssl|tls) verification",
    "world-writable permissions": r"chmod\s+777",
    "plaintext password storage": r"(?i)store[sd]?\s+(?:the\s+)?passwords?\s+in\s+plain\s*text",
    "SQL built by string concatenation": r"(?i)\"\s*select .* from .*\"\s*\+",
}


class SecurityChecker(Checker):
    """Scans for leaked secrets and unsafe patterns."""

    name = "security"
    SECRET_PENALTY = 0.5
    UNSAFE_PENALTY = 0.2

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        findings = []
        penalty = 0.0
        for label, pattern in SECRET_PATTERNS.items():
            if re.search(pattern, gate_input.content):
                findings.append(f"Possible secret: {label}")
                penalty += self.SECRET_PENALTY
        for label, pattern in UNSAFE_PATTERNS.items():
            if re.search(pattern, gate_input.content):
                findings.append(f"Unsafe pattern: {label}")
                penalty += self.UNSAFE_PENALTY
        return CheckResult(1.0 - penalty, findings)


STOPWORDS = {
    "about", "above", "after", "again", "against", "along", "also", "among", "because",
    "before", "being", "below", "between", "both", "could", "during", "each", "every",
    "from", "further", "have", "having", "into", "more", "most", "other", "over", "same",
    "should", "such", "than", "that", "their", "them", "then", "there", "these", "they",
    "this", "those", "through", "under", "until", "very", "what", "when", "where", "which",
    "while", "will", "with", "would", "your", "item", "items", "primary", "secondary",
}


def key_terms(text: str, limit: int = 20) -> List[str]:
    """Most frequent content words (5+ letters), ties broken alphabetically."""
    words = [w for w in re.findall(r"[a-z][a-z\-]{4,}", text.lower()) if w not in STOPWORDS]
    counts = Counter(words)
    return [w for w, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]]


class ConsistencyChecker(Checker):
    """Share of the previous stage's key terms carried forward."""

    name = "consistency"

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        if not gate_input.previous_content.strip():
            return CheckResult(1.0)
        terms = key_terms(gate_input.previous_content, int(gate.options.get("terms", 20)))
        if not terms:
            return CheckResult(1.0)
        text = gate_input.content.lower()
        missing = [t for t in terms if t not in text]
        findings = [f"Dropped terms from previous stage: {', '.join(missing[:10])}"] if missing else []
        return CheckResult((len(terms) - len(missing)) / len(terms), findings)


_STORY = re.compile(r"(?i)\bas an?\s+[^,\n]+?,?\s+i\s+want\b")
_CRITERION = re.compile(r"(?i)\bgiven\b[^\n]*\bwhen\b[^\n]*\bthen\b")


class TestabilityChecker(Checker):
    """User stories with Given/When/Then acceptance criteria."""

    __test__ = False  # keep pytest from collecting it
    name = "testability"

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        stories = len(_STORY.findall(gate_input.content))
        criteria = len(_CRITERION.findall(gate_input.content))
        findings = []
        if not stories:
            findings.append("No user stories in 'As a <role>, I want ...' form")
        if not criteria:
            findings.append("No Given/When/Then acceptance criteria")
        elif stories and criteria < stories:
            findings.append(f"{stories - criteria} user stor(ies) without acceptance criteria")
        story_part = 0.5 if stories else 0.0
        criteria_part = 0.5 * min(1.0, criteria / max(1, stories)) if criteria else 0.0
        return CheckResult(story_part + criteria_part, findings)


def default_checkers() -> Dict[str, Checker]:
    checkers = [
        CompletenessChecker(),
        StructureChecker(),
        SecurityChecker(),
        ConsistencyChecker(),
        TestabilityChecker(),
    ]
    return {c.name: c for c in checkers}
