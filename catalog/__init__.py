"""Static stage, agent, gate and MCP server configuration."""

from .catalog import EngineCatalog, get_catalog
from .defaults import DEFAULT_AGENTS, DEFAULT_GATES, DEFAULT_SERVERS, DEFAULT_STAGES

__all__ = [
    "EngineCatalog",
    "get_catalog",
    "DEFAULT_AGENTS",
    "DEFAULT_GATES",
    "DEFAULT_SERVERS",
    "DEFAULT_STAGES",
]
