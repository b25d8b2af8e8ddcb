"""Inference provider abstraction for stage and agent content."""

from .base import InferenceProvider, LLMResponse
from .factory import get_provider, list_providers
from .stub_provider import StubProvider

__all__ = [
    "InferenceProvider",
    "LLMResponse",
    "StubProvider",
    "get_provider",
    "list_providers",
]
