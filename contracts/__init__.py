"""Pydantic contracts for the Prompt Chain Engine.

All component-to-component handoffs are typed through these contracts.
"""

from .weighted import (
    WeightedScore,
    weights_sum_to_one,
    weighted_total,
)

from .context_contracts import (
    Domain,
    SignalBreakdown,
    ContextView,
    ProjectContext,
    domain_delta,
)

from .agent_contracts import (
    AgentType,
    AgentState,
    SpawnDecision,
    AgentDescriptor,
    UserPreferences,
    ScoringResult,
    AgentInstance,
    AgentOutput,
    ConflictRecord,
    PartialCoordinationFailure,
    AggregatedResult,
)

from .mcp_contracts import (
    HealthStatus,
    HealthCheckConfig,
    MCPServerConfig,
    ServerMetrics,
    MCPServerDescriptor,
    Lease,
    CapabilityResponse,
)

from .gate_contracts import (
    GateStatus,
    GateStrategy,
    QualityGate,
    GateResult,
    GateReport,
)

from .wave_contracts import (
    WaveStrategy,
    WavePhase,
    WaveDecision,
    WaveCheckpoint,
)

from .stage_contracts import (
    StageId,
    STAGE_ORDER,
    RunStatus,
    AgentPolicy,
    ChainStage,
    StageOutput,
    TransitionRecord,
    RemediationRequest,
    ChainRun,
    StageOutcome,
)

__all__ = [
    # Weighted scores
    "WeightedScore",
    "weights_sum_to_one",
    "weighted_total",
    # Context
    "Domain",
    "SignalBreakdown",
    "ContextView",
    "ProjectContext",
    "domain_delta",
    # Agents
    "AgentType",
    "AgentState",
    "SpawnDecision",
    "AgentDescriptor",
    "UserPreferences",
    "ScoringResult",
    "AgentInstance",
    "AgentOutput",
    "ConflictRecord",
    "PartialCoordinationFailure",
    "AggregatedResult",
    # MCP
    "HealthStatus",
    "HealthCheckConfig",
    "MCPServerConfig",
    "ServerMetrics",
    "MCPServerDescriptor",
    "Lease",
    "CapabilityResponse",
    # Gates
    "GateStatus",
    "GateStrategy",
    "QualityGate",
    "GateResult",
    "GateReport",
    # Waves
    "WaveStrategy",
    "WavePhase",
    "WaveDecision",
    "WaveCheckpoint",
    # Stages and runs
    "StageId",
    "STAGE_ORDER",
    "RunStatus",
    "AgentPolicy",
    "ChainStage",
    "StageOutput",
    "TransitionRecord",
    "RemediationRequest",
    "ChainRun",
    "StageOutcome",
]
