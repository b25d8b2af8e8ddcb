"""Agent spawn-worthiness scoring."""

from .engine import AgentScoringEngine, priority_index

__all__ = ["AgentScoringEngine", "priority_index"]
