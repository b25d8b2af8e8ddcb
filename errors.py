"""Error taxonomy for the Prompt Chain Engine.

Fatal conditions are exceptions. Informational conditions (scoring ties,
optional gate failures, wave flips) are Warning subclasses: they are logged
and emitted through the warnings module, never raised at the caller.
"""

from typing import Any, Dict, List, Optional


class ChainEngineError(Exception):
    """Base class for all engine errors."""


class CatalogError(ChainEngineError):
    """Stage, agent, gate or server configuration is invalid."""


class ContextAnalysisError(ChainEngineError):
    """The project root is missing, unreadable or empty. The run aborts."""

    def __init__(self, root: str, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"Cannot analyze project root {root!r}: {reason}")


class InvalidTransitionError(ChainEngineError):
    """A stage transition would violate monotonic stage order."""


class AgentSpawnFailure(ChainEngineError):
    """An agent instance failed to run to completion."""

    def __init__(self, agent_type: str, attempt: int, reason: str):
        self.agent_type = agent_type
        self.attempt = attempt
        self.reason = reason
        super().__init__(f"Agent {agent_type} failed on attempt {attempt}: {reason}")


class AgentOwnershipError(ChainEngineError):
    """An agent instance was assigned to a second chain run."""


class NoAvailableServerError(ChainEngineError):
    """No MCP server can currently serve the requested capability."""

    def __init__(self, capability_tag: str, tried: Optional[List[str]] = None):
        self.capability_tag = capability_tag
        self.tried = tried or []
        detail = f" (tried: {', '.join(self.tried)})" if self.tried else ""
        super().__init__(f"No available MCP server for capability '{capability_tag}'{detail}")


class CapabilityUnavailableError(ChainEngineError):
    """A required capability has no server and no remaining fallback."""

    def __init__(self, capability_tag: str, reason: str = "all fallbacks exhausted"):
        self.capability_tag = capability_tag
        super().__init__(f"Required capability '{capability_tag}' unavailable: {reason}")


class RequiredGateFailure(ChainEngineError):
    """One or more required gates failed; the stage transition is blocked."""

    def __init__(self, stage: str, failed_gates: List[str], report: Any = None):
        self.stage = stage
        self.failed_gates = failed_gates
        self.report = report
        super().__init__(
            f"Stage {stage} blocked by required gate(s): {', '.join(failed_gates)}"
        )


class ScoringAmbiguity(UserWarning):
    """A score landed exactly on a bucket boundary."""


class OptionalGateFailure(UserWarning):
    """A non-required gate fell below its threshold."""


class WaveMiscalculationWarning(UserWarning):
    """A context re-assessment flipped the wave decision mid-run."""


def error_diagnostics(error: BaseException) -> Dict[str, Any]:
    """Structured diagnostics for a run report."""
    diagnostics: Dict[str, Any] = {
        "error": str(error),
        "error_type": type(error).__name__,
    }
    for attr in ("root", "reason", "capability_tag", "stage", "failed_gates", "agent_type"):
        if hasattr(error, attr):
            diagnostics[attr] = getattr(error, attr)
    return diagnostics
