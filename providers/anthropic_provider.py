"""Anthropic (Claude) provider over the async Messages API."""

import logging
import os
from typing import Optional

from config import settings
from .base import InferenceProvider, LLMResponse

logger = logging.getLogger(__name__)


class AnthropicProvider(InferenceProvider):
    """Direct Anthropic provider, bypassing LiteLLM."""

    MODELS = {
        "claude-sonnet": "claude-sonnet-4-20250514",
        "claude-opus": "claude-opus-4-20250514",
        "claude-haiku": "claude-3-5-haiku-20241022",
        "sonnet": "claude-sonnet-4-20250514",
        "opus": "claude-opus-4-20250514",
        "haiku": "claude-3-5-haiku-20241022",
    }

    def __init__(self, api_key: Optional[str] = None, client=None):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key. Uses settings or ANTHROPIC_API_KEY env var if not provided.
            client: Pre-built AsyncAnthropic client (tests, shared connection pools)
        """
        self.api_key = api_key or settings.anthropic_api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._client = client

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return self.MODELS["claude-sonnet"]

    def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key, timeout=settings.api_timeout_seconds)
        return self._client

    def _resolve_model(self, model: Optional[str]) -> str:
        """Accept short aliases and LiteLLM-style 'anthropic/<model>' strings."""
        if model is None:
            return self.default_model
        if model.startswith("anthropic/"):
            model = model.split("/", 1)[1]
        return self.MODELS.get(model, model)

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        resolved_model = self._resolve_model(model)
        response = await self._get_client().messages.create(
            model=resolved_model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        if getattr(response, "stop_reason", None) == "max_tokens":
            logger.warning("Output from %s truncated at %d tokens", resolved_model, max_tokens)

        return LLMResponse(
            content="".join(block.text for block in response.content if getattr(block, "type", "text") == "text"),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=resolved_model,
            provider=self.name,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)
