"""Agent execution and coordination.

Agent kinds are a closed set (contracts.AgentType); one ChainAgent
executor runs any of them from its AgentDescriptor.
"""

from .base_agent import (
    ChainAgent,
    extract_regions,
    normalize_region,
    split_sections,
    section_text,
    remove_section,
)
from .coordinator import AgentCoordinator

__all__ = [
    "ChainAgent",
    "AgentCoordinator",
    "extract_regions",
    "normalize_region",
    "split_sections",
    "section_text",
    "remove_section",
]
