"""Factory for creating inference providers."""

from typing import Dict, Optional, Type

from config import settings
from .base import InferenceProvider
from .anthropic_provider import AnthropicProvider
from .litellm_provider import LiteLLMProvider
from .openai_provider import OpenAIProvider
from .stub_provider import StubProvider


# Registry of available providers
PROVIDERS: Dict[str, Type[InferenceProvider]] = {
    "litellm": LiteLLMProvider,
    "anthropic": AnthropicProvider,
    "claude": AnthropicProvider,
    "openai": OpenAIProvider,
    "gpt": OpenAIProvider,
    "stub": StubProvider,
}

ALIASES = {"claude", "gpt"}


def get_provider(
    provider_name: Optional[str] = None,
    model: Optional[str] = None,
) -> InferenceProvider:
    """Get an inference provider instance.

    Args:
        provider_name: Explicit provider name (litellm, anthropic, openai, stub).
                       Defaults to settings.default_provider.
        model: Default model for providers that take one (litellm, stub)

    Returns:
        InferenceProvider instance

    Examples:
        get_provider()  # LiteLLM with settings.default_model
        get_provider("stub")  # offline, deterministic
        get_provider("litellm", model="gpt-4o")
    """
    provider_key = (provider_name or settings.default_provider).lower()
    if provider_key not in PROVIDERS:
        raise ValueError(
            f"Unknown provider: {provider_name}. "
            f"Available: {list(PROVIDERS.keys())}"
        )
    provider_class = PROVIDERS[provider_key]
    if provider_class in (LiteLLMProvider, StubProvider):
        return provider_class(model or None)
    return provider_class()


def list_providers() -> Dict[str, bool]:
    """List all providers and their availability.

    Returns:
        Dict mapping provider name to availability status
    """
    result = {}
    for name, provider_class in PROVIDERS.items():
        # Skip aliases
        if name in ALIASES:
            continue
        try:
            provider = provider_class()
            result[name] = provider.is_available()
        except Exception:
            result[name] = False
    return result
