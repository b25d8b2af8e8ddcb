"""ServerRegistry: the only mutable shared state of the engine.

Holds health, rolling metrics and lease counts for every MCP server.
All mutation happens under one asyncio.Lock; readers get deep copies.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from config import settings
from contracts import (
    HealthStatus,
    Lease,
    MCPServerConfig,
    MCPServerDescriptor,
    ServerMetrics,
)

logger = logging.getLogger(__name__)


class ServerRegistry:
    """Explicit registry of capability servers, passed into the selector."""

    def __init__(
        self,
        servers: List[MCPServerConfig],
        unhealthy_after: Optional[int] = None,
        metrics_window: Optional[int] = None,
    ):
        self.unhealthy_after = unhealthy_after or settings.mcp_unhealthy_after_failures
        self.metrics_window = metrics_window or settings.mcp_metrics_window
        self._servers: Dict[str, MCPServerDescriptor] = {
            config.id: MCPServerDescriptor(config=config) for config in servers
        }
        self._samples: Dict[str, Deque[Tuple[float, bool]]] = {
            config.id: deque(maxlen=self.metrics_window) for config in servers
        }
        self._leases: Dict[str, Lease] = {}
        self._lock = asyncio.Lock()

    def snapshot(self) -> List[MCPServerDescriptor]:
        """Point-in-time copies of every descriptor."""
        return [d.model_copy(deep=True) for d in self._servers.values()]

    def get(self, server_id: str) -> MCPServerDescriptor:
        if server_id not in self._servers:
            raise KeyError(f"Server not found: {server_id}")
        return self._servers[server_id].model_copy(deep=True)

    def config(self, server_id: str) -> MCPServerConfig:
        return self.get(server_id).config

    @property
    def server_ids(self) -> List[str]:
        return list(self._servers)

    def active_leases(self, holder_id: Optional[str] = None) -> List[Lease]:
        leases = list(self._leases.values())
        if holder_id is not None:
            leases = [lease for lease in leases if lease.holder_id == holder_id]
        return leases

    async def grant_lease(self, server_id: str, capability_tag: str, holder_id: str) -> Optional[Lease]:
        """Take a capacity slot, or None when the server is at its cap or unhealthy."""
        async with self._lock:
            descriptor = self._servers[server_id]
            if descriptor.health == HealthStatus.UNHEALTHY or not descriptor.has_capacity:
                return None
            descriptor.active_leases += 1
            lease = Lease(server_id=server_id, capability_tag=capability_tag, holder_id=holder_id)
            self._leases[lease.lease_id] = lease
            logger.debug(
                "Lease %s granted on %s for %s (%d/%d)",
                lease.lease_id, server_id, holder_id,
                descriptor.active_leases, descriptor.config.max_concurrent_leases,
            )
            return lease

    async def release_lease(
        self,
        lease: Lease,
        latency_ms: Optional[float] = None,
        success: Optional[bool] = None,
    ) -> bool:
        """Return a slot and fold the call outcome into the rolling metrics.

        Releasing an already-released lease is a no-op and returns False.
        """
        async with self._lock:
            if self._leases.pop(lease.lease_id, None) is None:
                return False
            descriptor = self._servers[lease.server_id]
            descriptor.active_leases = max(0, descriptor.active_leases - 1)
            if latency_ms is not None and success is not None:
                samples = self._samples[lease.server_id]
                samples.append((latency_ms, success))
                descriptor.metrics = ServerMetrics(
                    samples=len(samples),
                    mean_latency_ms=sum(s[0] for s in samples) / len(samples),
                    success_rate=sum(1 for s in samples if s[1]) / len(samples),
                    consecutive_health_failures=descriptor.metrics.consecutive_health_failures,
                )
            return True

    async def release_holder(self, holder_id: str) -> int:
        """Release every lease held by one holder without recording metrics."""
        held = self.active_leases(holder_id)
        released = 0
        for lease in held:
            if await self.release_lease(lease):
                released += 1
        if released:
            logger.info("Released %d lease(s) held by %s", released, holder_id)
        return released

    async def record_health(self, server_id: str, ok: bool) -> HealthStatus:
        """Apply one health-check outcome and return the resulting status."""
        async with self._lock:
            descriptor = self._servers[server_id]
            failures = 0 if ok else descriptor.metrics.consecutive_health_failures + 1
            descriptor.metrics = descriptor.metrics.model_copy(update={"consecutive_health_failures": failures})
            previous = descriptor.health
            if failures == 0:
                descriptor.health = HealthStatus.HEALTHY
            elif failures >= self.unhealthy_after:
                descriptor.health = HealthStatus.UNHEALTHY
            else:
                descriptor.health = HealthStatus.DEGRADED
            if descriptor.health != previous:
                logger.warning(
                    "Server %s health %s -> %s (%d consecutive failure(s))",
                    server_id, previous.value, descriptor.health.value, failures,
                )
            return descriptor.health
