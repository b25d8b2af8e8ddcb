"""Periodic health checks of capability servers."""

import asyncio
import logging
from typing import Dict, Optional

from contracts import HealthStatus
from .invokers import CapabilityInvoker
from .registry import ServerRegistry

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Checks every registered server and records the outcome in the registry."""

    def __init__(self, registry: ServerRegistry, invoker: CapabilityInvoker):
        self.registry = registry
        self.invoker = invoker
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    async def check(self, server_id: str) -> HealthStatus:
        config = self.registry.config(server_id)
        try:
            ok = await asyncio.wait_for(self.invoker.ping(config), timeout=config.health_check.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.debug("Health check for %s timed out", server_id)
            ok = False
        return await self.registry.record_health(server_id, ok)

    async def check_all(self) -> Dict[str, HealthStatus]:
        server_ids = self.registry.server_ids
        statuses = await asyncio.gather(*(self.check(sid) for sid in server_ids))
        return dict(zip(server_ids, statuses))

    @property
    def interval_seconds(self) -> float:
        intervals = [self.registry.config(sid).health_check.interval_ms for sid in self.registry.server_ids]
        return min(intervals) / 1000 if intervals else 30.0

    async def run(self, check_first: bool = True) -> None:
        """Check at the shortest configured interval until stop() is called."""
        while not self._stop.is_set():
            if check_first:
                await self.check_all()
            check_first = True
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self, check_first: bool = True) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run(check_first), name="mcp-health-monitor")
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
