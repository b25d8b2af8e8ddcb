"""Agent contracts: descriptors, instances, scoring results and aggregated output."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .context_contracts import ContextView, Domain
from .weighted import WeightedScore


class AgentType(str, Enum):
    """Closed set of spawnable agent kinds."""
    FRONTEND = "frontend"
    BACKEND = "backend"
    SECURITY = "security"
    PERFORMANCE = "performance"
    ARCHITECT = "architect"
    ANALYZER = "analyzer"
    SCRIBE = "scribe"


class AgentState(str, Enum):
    """Lifecycle state of an agent instance."""
    SPAWNED = "spawned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.COMPLETED, AgentState.FAILED, AgentState.CANCELLED)


class SpawnDecision(str, Enum):
    """Decision bucket for a scored agent."""
    AUTO_SPAWN = "auto_spawn"  # spawned without asking
    SUGGEST = "suggest"  # surfaced to the caller, not spawned
    SKIP = "skip"  # orchestrator handles the domain alone


class AgentDescriptor(BaseModel):
    """Capability profile of a spawnable agent kind."""
    agent_type: AgentType = Field(..., description="Closed agent variant")
    domain: Domain = Field(..., description="Project domain this agent covers")
    domain_keywords: List[str] = Field(default_factory=list, description="Content keywords signalling this domain")
    file_patterns: List[str] = Field(default_factory=list, description="File extensions or name fragments, e.g. '.tsx'")
    dir_patterns: List[str] = Field(default_factory=list, description="Directory names, e.g. 'components'")
    stage_tags: List[str] = Field(default_factory=list, description="Tags matched against stage requirement tags")
    mcp_capability_tags: List[str] = Field(default_factory=list, description="Capabilities this agent binds through MCP")
    required_capability_tags: List[str] = Field(
        default_factory=list,
        description="Subset of mcp_capability_tags the agent cannot work without",
    )
    allowed_tools: List[str] = Field(default_factory=list)
    system_prompt: str = Field("", description="Role prompt for the agent's inference calls")

    @property
    def id(self) -> str:
        return self.agent_type.value


class UserPreferences(BaseModel):
    """Caller preferences feeding the preference sub-score."""
    preferred_agents: List[AgentType] = Field(default_factory=list)
    excluded_agents: List[AgentType] = Field(default_factory=list)
    agent_weights: Dict[AgentType, float] = Field(
        default_factory=dict,
        description="Explicit preference weight in [0, 1] per agent; overrides preferred/excluded",
    )
    neutral_weight: float = Field(0.5, ge=0.0, le=1.0)

    def weight_for(self, agent_type: AgentType) -> float:
        if agent_type in self.agent_weights:
            return min(1.0, max(0.0, self.agent_weights[agent_type]))
        if agent_type in self.excluded_agents:
            return 0.0
        if agent_type in self.preferred_agents:
            return 1.0
        return self.neutral_weight

    def is_excluded(self, agent_type: AgentType) -> bool:
        return agent_type in self.excluded_agents


class ScoringResult(WeightedScore):
    """Outcome of scoring one AgentDescriptor for the current stage."""
    agent_type: AgentType
    stage: str
    decision: SpawnDecision
    ambiguous: bool = Field(False, description="Total sat exactly on a bucket boundary")
    matched_signals: Dict[str, List[str]] = Field(default_factory=dict)

    @property
    def stage_requirement(self) -> float:
        return self.sub_scores["stage_requirement"]

    @property
    def content(self) -> float:
        return self.sub_scores["content"]

    @property
    def context(self) -> float:
        return self.sub_scores["context"]

    @property
    def preference(self) -> float:
        return self.sub_scores["preference"]


class AgentInstance(BaseModel):
    """A running agent bound to one ChainRun."""
    instance_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    run_id: str
    descriptor: AgentDescriptor
    task: str
    context: ContextView
    state: AgentState = AgentState.SPAWNED
    attempts: int = 0
    error: Optional[str] = None
    spawned_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def agent_type(self) -> AgentType:
        return self.descriptor.agent_type


class AgentOutput(BaseModel):
    """Terminal result produced by one agent instance."""
    agent_type: AgentType
    instance_id: str
    content: str
    regions: List[str] = Field(default_factory=list, description="Output regions claimed (section headings)")
    confidence_reduced: bool = False
    capability_sources: Dict[str, str] = Field(
        default_factory=dict,
        description="Capability tag -> server id, or fallback name when degraded",
    )
    model: Optional[str] = None


class ConflictRecord(BaseModel):
    """Two agents claimed the same output region; the higher priority one won."""
    region: str
    winner: AgentType
    loser: AgentType
    secondary_suggestion: str = Field(..., description="The losing agent's content, kept as a suggestion")


class PartialCoordinationFailure(BaseModel):
    """A domain whose agent failed after its retry and was dropped."""
    agent_type: AgentType
    attempts: int
    reason: str


class AggregatedResult(BaseModel):
    """Deterministically ordered combination of one stage's agent outputs."""
    outputs: List[AgentOutput] = Field(default_factory=list)
    conflicts: List[ConflictRecord] = Field(default_factory=list)
    failures: List[PartialCoordinationFailure] = Field(default_factory=list)
    cancelled: List[AgentType] = Field(default_factory=list)

    @property
    def partial_coordination_failure(self) -> bool:
        return bool(self.failures)

    @property
    def confidence_reduced(self) -> bool:
        return any(o.confidence_reduced for o in self.outputs)

    def combined_content(self) -> str:
        """Agent contributions in aggregation order, for the stage prompt."""
        parts = []
        for output in self.outputs:
            marker = " (reduced confidence)" if output.confidence_reduced else ""
            parts.append(f"## Contribution: {output.agent_type.value}{marker}\n\n{output.content.strip()}")
        return "\n\n".join(parts)

    def summary(self) -> Dict[str, Any]:
        return {
            "agents": [o.agent_type.value for o in self.outputs],
            "conflicts": len(self.conflicts),
            "failed": [f.agent_type.value for f in self.failures],
            "cancelled": [a.value for a in self.cancelled],
            "confidence_reduced": self.confidence_reduced,
        }
