"""Project context analysis from filesystem signals."""

from .context_analyzer import ContextAnalyzer, DOMAIN_SIGNALS, EXCLUDED_DIRS

__all__ = ["ContextAnalyzer", "DOMAIN_SIGNALS", "EXCLUDED_DIRS"]
