"""Wave mode contracts."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .gate_contracts import GateReport
from .weighted import WeightedScore


class WaveStrategy(str, Enum):
    """Execution strategy chosen by the Wave Mode Assessor."""
    SINGLE_PASS = "single_pass"
    PROGRESSIVE = "progressive"
    CONTEXT_DRIVEN = "context_driven"
    AGENT_COORDINATED = "agent_coordinated"
    VALIDATION = "validation"


class WavePhase(str, Enum):
    """Sequential waves within a stage in multi-wave mode."""
    FOUNDATION = "foundation"
    ENHANCEMENT = "enhancement"
    OPTIMIZATION = "optimization"


class WaveDecision(WeightedScore):
    """Outcome of the complexity assessment."""
    multi_wave: bool
    strategy: WaveStrategy
    waves: List[WavePhase] = Field(default_factory=list)
    context_version: Optional[int] = None
    assessed_at: datetime = Field(default_factory=datetime.now)

    @property
    def chain_complexity(self) -> float:
        return self.sub_scores["chain_complexity"]

    @property
    def agent_coordination(self) -> float:
        return self.sub_scores["agent_coordination"]

    def same_mode_as(self, other: "WaveDecision") -> bool:
        return self.multi_wave == other.multi_wave and self.strategy == other.strategy


class WaveCheckpoint(BaseModel):
    """Context update and gate pass recorded at the end of one wave."""
    phase: WavePhase
    agents: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    gate_report: Optional[GateReport] = None
    completed_at: datetime = Field(default_factory=datetime.now)
