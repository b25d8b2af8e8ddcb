"""MCP capability server contracts."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health of a capability server as seen by the registry."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # recent health-check failures, still selectable
    UNHEALTHY = "unhealthy"  # excluded from selection


class HealthCheckConfig(BaseModel):
    """Health check settings for one server."""
    interval_ms: int = Field(30_000, gt=0)
    timeout_ms: int = Field(5_000, gt=0)


class MCPServerConfig(BaseModel):
    """Static configuration of a capability server."""
    id: str
    capability_tags: List[str] = Field(..., min_length=1)
    priority: int = Field(100, description="Lower value is preferred")
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    max_concurrent_leases: int = Field(4, ge=1)
    command: Optional[str] = Field(None, description="Executable for stdio transport")
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    tools: Dict[str, str] = Field(
        default_factory=dict,
        description="Capability tag -> MCP tool name invoked for it",
    )
    version: str = Field("1", description="Server version, part of the gate idempotence key")


class ServerMetrics(BaseModel):
    """Rolling performance metrics snapshot."""
    samples: int = 0
    mean_latency_ms: float = 0.0
    success_rate: float = 1.0
    consecutive_health_failures: int = 0


class MCPServerDescriptor(BaseModel):
    """Selectable view of a server: its configuration plus live state."""
    config: MCPServerConfig
    health: HealthStatus = HealthStatus.HEALTHY
    metrics: ServerMetrics = Field(default_factory=ServerMetrics)
    active_leases: int = 0

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def capability_tags(self) -> List[str]:
        return self.config.capability_tags

    @property
    def has_capacity(self) -> bool:
        return self.active_leases < self.config.max_concurrent_leases


class Lease(BaseModel):
    """Exclusive capacity slot on a server for one capability call."""
    lease_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    server_id: str
    capability_tag: str
    holder_id: str
    granted_at: datetime = Field(default_factory=datetime.now)


class CapabilityResponse(BaseModel):
    """Black-box response from an MCP capability call."""
    result: Any = None
    latency_ms: float = Field(0.0, ge=0.0)
    success: bool = True
    server_id: Optional[str] = None
    error: Optional[str] = None
    fallback: Optional[str] = Field(None, description="Degraded fallback applied instead of a server")

    @property
    def confidence_reduced(self) -> bool:
        return self.fallback is not None

    @property
    def source(self) -> str:
        return self.server_id or self.fallback or "none"

    def structured_score(self) -> Optional[float]:
        """A 'score' field in a dict result, clamped to [0, 1], if present."""
        if isinstance(self.result, dict) and isinstance(self.result.get("score"), (int, float)):
            return min(1.0, max(0.0, float(self.result["score"])))
        return None
