"""Capability invokers: how a leased MCP server is actually called.

The engine treats servers as black boxes returning {result, latency_ms, success}.
StdioCapabilityInvoker talks to them through the MCP Python SDK.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from config import settings
from contracts import CapabilityResponse, MCPServerConfig

logger = logging.getLogger(__name__)


class CapabilityInvoker(ABC):
    """Abstract transport to a capability server."""

    @abstractmethod
    async def invoke(
        self,
        server: MCPServerConfig,
        capability_tag: str,
        payload: Dict[str, Any],
    ) -> CapabilityResponse:
        """Call the server's tool for capability_tag with payload."""
        pass

    @abstractmethod
    async def ping(self, server: MCPServerConfig) -> bool:
        """Health check. True when the server answers."""
        pass


class StdioCapabilityInvoker(CapabilityInvoker):
    """Spawns the server over stdio per call and invokes its mapped tool."""

    def __init__(self, call_timeout_seconds: Optional[float] = None):
        self.call_timeout_seconds = call_timeout_seconds or settings.mcp_call_timeout_seconds

    def _params(self, server: MCPServerConfig) -> StdioServerParameters:
        if not server.command:
            raise ValueError(f"Server {server.id} has no command for stdio transport")
        return StdioServerParameters(command=server.command, args=list(server.args), env=dict(server.env) or None)

    async def invoke(
        self,
        server: MCPServerConfig,
        capability_tag: str,
        payload: Dict[str, Any],
    ) -> CapabilityResponse:
        tool = server.tools.get(capability_tag, capability_tag)
        start = time.monotonic()
        try:
            async with stdio_client(self._params(server)) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    result = await session.call_tool(tool, arguments=payload)
        except Exception as e:
            latency_ms = (time.monotonic() - start) * 1000
            logger.warning("Capability %s on %s failed: %s", capability_tag, server.id, e)
            return CapabilityResponse(latency_ms=latency_ms, success=False, server_id=server.id, error=str(e))

        latency_ms = (time.monotonic() - start) * 1000
        return CapabilityResponse(
            result=self._extract(result),
            latency_ms=latency_ms,
            success=not getattr(result, "isError", False),
            server_id=server.id,
        )

    async def ping(self, server: MCPServerConfig) -> bool:
        try:
            async with stdio_client(self._params(server)) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    await session.list_tools()
            return True
        except Exception as e:
            logger.debug("Health check for %s failed: %s", server.id, e)
            return False

    @staticmethod
    def _extract(result: Any) -> Any:
        """Prefer structured content; otherwise join text blocks, decoding JSON when possible."""
        structured = getattr(result, "structuredContent", None)
        if structured:
            return structured
        texts = [block.text for block in getattr(result, "content", []) or [] if hasattr(block, "text")]
        text = "\n".join(texts)
        try:
            return json.loads(text)
        except ValueError:
            return text
