"""Quality gate contracts."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from errors import RequiredGateFailure


class GateStatus(str, Enum):
    """Outcome of a gate invocation."""
    PASSED = "passed"
    WARNING = "warning"  # below threshold on a non-required gate
    FAILED = "failed"
    BLOCKED = "blocked"  # not run: dependency unmet or sequential fail-fast


class GateStrategy(str, Enum):
    """How a set of gates is scheduled."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ADAPTIVE = "adaptive"


class QualityGate(BaseModel):
    """A named, thresholded validation check."""
    id: str
    checker: str = Field("", description="Checker name; defaults to the gate id")
    required_capability_tags: List[str] = Field(default_factory=list)
    threshold: float = Field(..., ge=0.0, le=1.0)
    timeout_ms: int = Field(30_000, gt=0)
    required: bool = True
    depends_on: List[str] = Field(default_factory=list)
    tool_version: str = Field("1", description="Checker version, part of the idempotence key")
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def checker_name(self) -> str:
        return self.checker or self.id


class GateResult(BaseModel):
    """Immutable outcome of running one QualityGate."""
    model_config = ConfigDict(frozen=True)

    gate_id: str
    status: GateStatus
    score: float = Field(..., ge=0.0, le=1.0)
    threshold: float = Field(..., ge=0.0, le=1.0)
    required: bool
    breakdown: Dict[str, float] = Field(default_factory=dict, description="Score per tool / server")
    findings: List[str] = Field(default_factory=list)
    input_digest: str = ""
    confidence_reduced: bool = Field(False, description="A declared capability was served by a fallback or not at all")

    @property
    def blocks_transition(self) -> bool:
        return self.required and self.status in (GateStatus.FAILED, GateStatus.BLOCKED)


class GateReport(BaseModel):
    """All gate results for one stage invocation."""
    stage: str
    strategy: GateStrategy
    results: List[GateResult] = Field(default_factory=list)

    @property
    def blocking(self) -> List[GateResult]:
        return [r for r in self.results if r.blocks_transition]

    @property
    def warnings(self) -> List[GateResult]:
        return [r for r in self.results if r.status == GateStatus.WARNING]

    @property
    def passed(self) -> bool:
        return not self.blocking

    def get(self, gate_id: str) -> Optional[GateResult]:
        for result in self.results:
            if result.gate_id == gate_id:
                return result
        return None

    def raise_for_blocking(self) -> None:
        """Raise RequiredGateFailure when any required gate blocks the stage."""
        if self.blocking:
            raise RequiredGateFailure(self.stage, [r.gate_id for r in self.blocking], report=self)
