"""Project context contracts produced by the Context Analyzer."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Domain(str, Enum):
    """Project domains scored by the Context Analyzer."""
    FRONTEND = "frontend"
    BACKEND = "backend"
    SECURITY = "security"
    PERFORMANCE = "performance"
    ARCHITECTURE = "architecture"
    ANALYSIS = "analysis"
    DOCUMENTATION = "documentation"


class SignalBreakdown(BaseModel):
    """Per-group signal scores for one domain, before weighting."""
    model_config = ConfigDict(frozen=True)

    extensions: float = Field(0.0, ge=0.0, le=1.0)
    directories: float = Field(0.0, ge=0.0, le=1.0)
    keywords: float = Field(0.0, ge=0.0, le=1.0)
    imports: float = Field(0.0, ge=0.0, le=1.0)


class ContextView(BaseModel):
    """Read-only context subset handed to a single agent instance."""
    model_config = ConfigDict(frozen=True)

    context_version: int
    domain: Optional[Domain] = None
    domain_score: float = Field(0.0, ge=0.0, le=1.0)
    domain_scores: Dict[Domain, float] = Field(default_factory=dict)
    directory_hits: List[str] = Field(default_factory=list)
    framework_hits: List[str] = Field(default_factory=list)
    extension_histogram: Dict[str, int] = Field(default_factory=dict)
    checkpoint_notes: List[str] = Field(default_factory=list)

    def summary(self) -> str:
        """Short text rendering for prompts."""
        top = sorted(self.domain_scores.items(), key=lambda kv: kv[1], reverse=True)[:4]
        parts = [f"{d.value}: {s:.2f}" for d, s in top]
        lines = [f"Domain scores: {', '.join(parts) or 'none'}"]
        if self.framework_hits:
            lines.append(f"Frameworks: {', '.join(self.framework_hits[:10])}")
        if self.directory_hits:
            lines.append(f"Directories: {', '.join(self.directory_hits[:10])}")
        for note in self.checkpoint_notes:
            lines.append(f"Checkpoint: {note}")
        return "\n".join(lines)


class ProjectContext(BaseModel):
    """Weighted signal snapshot of the target project.

    Immutable: a filesystem change produces a new version via
    ContextAnalyzer.rederive, never an in-place update.
    """
    model_config = ConfigDict(frozen=True)

    version: int = Field(1, ge=1)
    root: str
    domain_scores: Dict[Domain, float] = Field(default_factory=dict)
    signal_breakdown: Dict[Domain, SignalBreakdown] = Field(default_factory=dict)
    extension_histogram: Dict[str, int] = Field(default_factory=dict)
    directory_hits: Dict[str, int] = Field(default_factory=dict, description="Matched directory pattern -> count")
    keyword_hits: Dict[str, int] = Field(default_factory=dict, description="Matched content keyword -> count")
    framework_hits: Dict[str, int] = Field(default_factory=dict, description="Detected import/framework -> count")
    files_scanned: int = 0
    unreadable_paths: List[str] = Field(default_factory=list)
    fingerprint: str = ""

    def score(self, domain: Domain) -> float:
        """Domain score, 0.0 when the domain produced no signal."""
        return self.domain_scores.get(domain, 0.0)

    def relevant_domains(self, minimum: float = 0.3) -> List[Domain]:
        """Domains whose score reaches the given minimum."""
        return [d for d, s in self.domain_scores.items() if s >= minimum]

    def subset_for(self, domain: Optional[Domain] = None, notes: Optional[List[str]] = None) -> ContextView:
        """Build an independent read-only view for one agent.

        Every call returns fresh copies so no two agents share a container.
        """
        return ContextView(
            context_version=self.version,
            domain=domain,
            domain_score=self.score(domain) if domain else 0.0,
            domain_scores=dict(self.domain_scores),
            directory_hits=sorted(self.directory_hits),
            framework_hits=sorted(self.framework_hits),
            extension_histogram=dict(self.extension_histogram),
            checkpoint_notes=list(notes or []),
        )


def domain_delta(previous: ProjectContext, current: ProjectContext) -> float:
    """Largest absolute per-domain score change between two context versions."""
    domains = set(previous.domain_scores) | set(current.domain_scores)
    if not domains:
        return 0.0
    return max(abs(current.score(d) - previous.score(d)) for d in domains)
