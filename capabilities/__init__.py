"""MCP capability server selection, leasing, health and fallbacks."""

from .fallbacks import apply_fallback, fallback_for, FALLBACK_HANDLERS
from .health import HealthMonitor
from .invokers import CapabilityInvoker, StdioCapabilityInvoker
from .registry import ServerRegistry
from .selector import MCPServerSelector

__all__ = [
    "ServerRegistry",
    "MCPServerSelector",
    "HealthMonitor",
    "CapabilityInvoker",
    "StdioCapabilityInvoker",
    "apply_fallback",
    "fallback_for",
    "FALLBACK_HANDLERS",
]
