"""MCP Server Selector.

Candidate order for a capability tag:
1. Static agent-to-server affinity (AGENT_SERVER_AFFINITY), then configured priority
2. Rolling metrics must clear the success-rate and latency minimums
   (servers without samples pass); servers below them are tried last
3. Round-robin among the top tier of servers that clear the minimums

UNHEALTHY servers are never candidates. Leases are the single mutation
point for load and metrics; a server at its lease cap is skipped and the
next candidate is tried.
"""

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from config import settings, AGENT_SERVER_AFFINITY
from contracts import CapabilityResponse, HealthStatus, Lease, MCPServerDescriptor
from errors import CapabilityUnavailableError, NoAvailableServerError
from .fallbacks import apply_fallback
from .invokers import CapabilityInvoker
from .registry import ServerRegistry

logger = logging.getLogger(__name__)


def _agent_key(agent_type: Any) -> Optional[str]:
    return getattr(agent_type, "value", agent_type)


class MCPServerSelector:
    """Matches capability requests to servers through the ServerRegistry."""

    def __init__(
        self,
        registry: ServerRegistry,
        invoker: Optional[CapabilityInvoker] = None,
        affinity: Optional[Dict[str, List[str]]] = None,
        min_success_rate: Optional[float] = None,
        max_latency_ms: Optional[float] = None,
        call_timeout_seconds: Optional[float] = None,
    ):
        self.registry = registry
        self.invoker = invoker
        self.affinity = AGENT_SERVER_AFFINITY if affinity is None else affinity
        self.min_success_rate = settings.mcp_min_success_rate if min_success_rate is None else min_success_rate
        self.max_latency_ms = max_latency_ms or settings.mcp_max_latency_ms
        self.call_timeout_seconds = call_timeout_seconds or settings.mcp_call_timeout_seconds
        self._round_robin: Dict[Tuple[str, Optional[str]], int] = defaultdict(int)

    def _metrics_ok(self, server: MCPServerDescriptor) -> bool:
        if server.metrics.samples == 0:
            return True
        return (
            server.metrics.success_rate >= self.min_success_rate
            and server.metrics.mean_latency_ms <= self.max_latency_ms
        )

    def candidates(
        self,
        capability_tag: str,
        agent_type: Any = None,
        exclude: Iterable[str] = (),
    ) -> List[MCPServerDescriptor]:
        """Eligible servers for a tag, best first."""
        excluded = set(exclude)
        agent = _agent_key(agent_type)
        preferred = self.affinity.get(agent, []) if agent else []

        def rank(server: MCPServerDescriptor) -> Tuple[int, int]:
            position = preferred.index(server.id) if server.id in preferred else len(preferred)
            return position, server.config.priority

        eligible = [
            s for s in self.registry.snapshot()
            if capability_tag in s.capability_tags
            and s.id not in excluded
            and s.health != HealthStatus.UNHEALTHY
        ]
        eligible.sort(key=lambda s: (rank(s), s.id))
        # A lagging server only gets traffic when nothing better is left;
        # those calls are what move its rolling window again.
        lagging = [s for s in eligible if not self._metrics_ok(s)]
        eligible = [s for s in eligible if self._metrics_ok(s)]
        if len(eligible) > 1:
            top = rank(eligible[0])
            tier = [s for s in eligible if rank(s) == top]
            if len(tier) > 1:
                key = (capability_tag, agent)
                offset = self._round_robin[key] % len(tier)
                self._round_robin[key] += 1
                eligible = tier[offset:] + tier[:offset] + eligible[len(tier):]
        return eligible + lagging

    def select(self, capability_tag: str, agent_type: Any = None) -> MCPServerDescriptor:
        """Best server for the capability.

        Raises:
            NoAvailableServerError: If no healthy server qualifies.
        """
        candidates = self.candidates(capability_tag, agent_type)
        if not candidates:
            raise NoAvailableServerError(capability_tag, self._servers_with(capability_tag))
        return candidates[0]

    def _servers_with(self, capability_tag: str) -> List[str]:
        return [s.id for s in self.registry.snapshot() if capability_tag in s.capability_tags]

    async def acquire(
        self,
        capability_tag: str,
        holder_id: str,
        agent_type: Any = None,
        exclude: Iterable[str] = (),
    ) -> Lease:
        """Lease a slot on the best candidate with spare capacity."""
        tried = []
        for server in self.candidates(capability_tag, agent_type, exclude):
            lease = await self.registry.grant_lease(server.id, capability_tag, holder_id)
            if lease is not None:
                return lease
            logger.debug("Server %s at lease cap for %s, trying next", server.id, capability_tag)
            tried.append(server.id)
        raise NoAvailableServerError(capability_tag, list(exclude) + tried or self._servers_with(capability_tag))

    async def release(
        self,
        lease: Lease,
        latency_ms: Optional[float] = None,
        success: Optional[bool] = None,
    ) -> bool:
        return await self.registry.release_lease(lease, latency_ms, success)

    async def release_holder(self, holder_id: str) -> int:
        return await self.registry.release_holder(holder_id)

    @asynccontextmanager
    async def lease(self, capability_tag: str, holder_id: str, agent_type: Any = None) -> AsyncIterator[Lease]:
        """Hold a lease for one capability call; always released on exit."""
        lease = await self.acquire(capability_tag, holder_id, agent_type)
        start = time.monotonic()
        ok = False
        try:
            yield lease
            ok = True
        finally:
            await self.release(lease, (time.monotonic() - start) * 1000, ok)

    async def call(
        self,
        capability_tag: str,
        payload: Dict[str, Any],
        holder_id: str,
        agent_type: Any = None,
    ) -> CapabilityResponse:
        """Invoke the capability on the best server, moving down the list on failure.

        Raises:
            NoAvailableServerError: If every candidate is full, unhealthy or failed.
        """
        if self.invoker is None:
            raise NoAvailableServerError(capability_tag, [])
        tried: List[str] = []
        while True:
            try:
                lease = await self.acquire(capability_tag, holder_id, agent_type, exclude=tried)
            except NoAvailableServerError as e:
                raise NoAvailableServerError(capability_tag, tried or e.tried) from None

            response: Optional[CapabilityResponse] = None
            try:
                config = self.registry.config(lease.server_id)
                try:
                    response = await asyncio.wait_for(
                        self.invoker.invoke(config, capability_tag, payload),
                        timeout=self.call_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    response = CapabilityResponse(
                        latency_ms=self.call_timeout_seconds * 1000,
                        success=False,
                        server_id=lease.server_id,
                        error="timeout",
                    )
            finally:
                if response is None:
                    await self.release(lease)
                else:
                    await self.release(lease, response.latency_ms, response.success)

            if response.success:
                return response
            logger.warning(
                "Capability %s failed on %s: %s", capability_tag, lease.server_id, response.error,
            )
            tried.append(lease.server_id)

    async def call_with_fallback(
        self,
        capability_tag: str,
        payload: Dict[str, Any],
        holder_id: str,
        agent_type: Any = None,
        required: bool = False,
    ) -> CapabilityResponse:
        """Invoke the capability, degrading to its documented fallback when no server serves it.

        Raises:
            CapabilityUnavailableError: If a required capability has no server and no fallback.
        """
        try:
            return await self.call(capability_tag, payload, holder_id, agent_type)
        except NoAvailableServerError as e:
            degraded = apply_fallback(capability_tag, payload)
            if degraded is not None:
                return degraded
            if required:
                raise CapabilityUnavailableError(capability_tag, str(e)) from e
            logger.warning("Optional capability %s unavailable, continuing without it", capability_tag)
            return CapabilityResponse(success=False, fallback="omitted", error=str(e))
