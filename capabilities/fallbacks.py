"""Degraded fallbacks applied when no MCP server can serve a capability.

documentation -> search_lookup: a generic search-style lookup brief
reasoning -> single_pass_analysis: direct analysis without decomposition

Every fallback response carries `fallback`, which marks the consuming
output as confidence_reduced.
"""

import logging
from typing import Any, Callable, Dict, Optional

from config import CAPABILITY_FALLBACKS
from contracts import CapabilityResponse

logger = logging.getLogger(__name__)


def _query_of(payload: Dict[str, Any]) -> str:
    for key in ("query", "topic", "task", "content"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def search_lookup(payload: Dict[str, Any]) -> Dict[str, Any]:
    query = _query_of(payload)
    return {
        "mode": "search_lookup",
        "query": query,
        "guidance": (
            "No documentation server was available. Rely on well-known public "
            "documentation for the technologies mentioned and flag any API detail "
            "that should be verified."
        ),
    }


def single_pass_analysis(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "mode": "single_pass_analysis",
        "task": _query_of(payload),
        "guidance": (
            "No reasoning server was available. Analyze the task directly in a "
            "single pass without step decomposition and state assumptions explicitly."
        ),
    }


FALLBACK_HANDLERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "search_lookup": search_lookup,
    "single_pass_analysis": single_pass_analysis,
}


def fallback_for(capability_tag: str) -> Optional[str]:
    """Name of the documented fallback for a capability, if any."""
    return CAPABILITY_FALLBACKS.get(capability_tag)


def apply_fallback(capability_tag: str, payload: Dict[str, Any]) -> Optional[CapabilityResponse]:
    """Run the capability's fallback, or None when it has none."""
    name = fallback_for(capability_tag)
    if name is None or name not in FALLBACK_HANDLERS:
        return None
    logger.warning("Capability %s degraded to fallback %s", capability_tag, name)
    return CapabilityResponse(result=FALLBACK_HANDLERS[name](payload), success=True, fallback=name)
