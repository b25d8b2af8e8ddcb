"""Stage and chain-run contracts for the five-stage pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .agent_contracts import AgentType, AggregatedResult, ScoringResult
from .context_contracts import ProjectContext
from .gate_contracts import GateReport
from .wave_contracts import WaveCheckpoint, WaveDecision


class StageId(str, Enum):
    """Pipeline stages, in order."""
    IDEA_DEFINITION = "idea_definition"
    PRD = "prd"
    TRD = "trd"
    FEATURE_BREAKDOWN = "feature_breakdown"
    USER_STORY = "user_story"


STAGE_ORDER: List[StageId] = [
    StageId.IDEA_DEFINITION,
    StageId.PRD,
    StageId.TRD,
    StageId.FEATURE_BREAKDOWN,
    StageId.USER_STORY,
]


class RunStatus(str, Enum):
    """State of a chain run."""
    IN_PROGRESS = "in_progress"
    AWAITING_REMEDIATION = "awaiting_remediation"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.ABORTED, RunStatus.FAILED)


class AgentPolicy(BaseModel):
    """Which agents a stage requires or allows, and its spawn threshold."""
    spawning_threshold: Optional[float] = Field(
        None, ge=0.0, le=1.0,
        description="Stage-specific auto-spawn threshold; defaults to settings.auto_spawn_threshold",
    )
    required_agents: List[AgentType] = Field(default_factory=list)
    optional_agents: List[AgentType] = Field(default_factory=list)


class ChainStage(BaseModel):
    """One pipeline stage definition (static configuration)."""
    id: StageId
    title: str = ""
    required_inputs: List[str] = Field(default_factory=list)
    output_format: List[str] = Field(
        default_factory=list,
        description="Section headings the stage output must contain",
    )
    required_gates: List[str] = Field(default_factory=list)
    optional_gates: List[str] = Field(default_factory=list)
    agent_policy: AgentPolicy = Field(default_factory=AgentPolicy)
    requirement_tags: List[str] = Field(default_factory=list)
    next_stage: Optional[StageId] = None
    prompt: str = Field("", description="Stage instruction sent to the inference provider")

    @property
    def all_gates(self) -> List[str]:
        return list(self.required_gates) + [g for g in self.optional_gates if g not in self.required_gates]


class StageOutput(BaseModel):
    """Accepted output of one stage."""
    stage: StageId
    content: str
    agent_contributions: AggregatedResult = Field(default_factory=AggregatedResult)
    scoring: List[ScoringResult] = Field(default_factory=list)
    gate_report: Optional[GateReport] = None
    wave_checkpoints: List[WaveCheckpoint] = Field(default_factory=list)
    remediated: bool = False
    model: Optional[str] = None
    produced_at: datetime = Field(default_factory=datetime.now)


class TransitionRecord(BaseModel):
    """One entry of the run's transition log."""
    from_stage: Optional[StageId] = None
    to_stage: Optional[StageId] = None
    kind: str = Field(..., description="start, advance, remediation, complete, abort, fail")
    at: datetime = Field(default_factory=datetime.now)
    note: str = ""


class RemediationRequest(BaseModel):
    """Returned to the caller when a required gate blocks a stage."""
    stage: StageId
    failed_gates: List[str]
    findings: Dict[str, List[str]] = Field(default_factory=dict)
    pending_content: str = Field(..., description="Content that failed; the caller revises it")
    gate_report: GateReport


class ChainRun(BaseModel):
    """One execution of the five-stage pipeline."""
    run_id: str
    idea: str
    project_root: Optional[str] = None
    status: RunStatus = RunStatus.IN_PROGRESS
    current_stage: Optional[StageId] = StageId.IDEA_DEFINITION
    stages: List[StageOutput] = Field(default_factory=list)
    context: Optional[ProjectContext] = None
    wave_decision: Optional[WaveDecision] = None
    pending_wave_decision: Optional[WaveDecision] = None
    remediation: Optional[RemediationRequest] = None
    pending_output: Optional[StageOutput] = None
    suggested_agents: Dict[str, List[AgentType]] = Field(default_factory=dict)
    history: List[TransitionRecord] = Field(default_factory=list)
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def completed_stages(self) -> List[StageId]:
        return [s.stage for s in self.stages]

    def output_for(self, stage: StageId) -> Optional[StageOutput]:
        for output in self.stages:
            if output.stage == stage:
                return output
        return None

    @property
    def last_output(self) -> Optional[StageOutput]:
        return self.stages[-1] if self.stages else None


class StageOutcome(BaseModel):
    """What the caller gets back from advancing or remediating a stage."""
    run_id: str
    stage: Optional[StageId]
    status: RunStatus
    advanced: bool = False
    output: Optional[StageOutput] = None
    remediation: Optional[RemediationRequest] = None
    suggested_agents: List[AgentType] = Field(default_factory=list)
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
