"""OpenAI provider over the async Chat Completions API."""

import logging
import os
from typing import Optional

from config import settings
from .base import InferenceProvider, LLMResponse

logger = logging.getLogger(__name__)


class OpenAIProvider(InferenceProvider):
    """Direct OpenAI provider, bypassing LiteLLM."""

    MODELS = {
        "gpt-4o": "gpt-4o",
        "gpt-4o-mini": "gpt-4o-mini",
        "gpt-4-turbo": "gpt-4-turbo",
        "o1": "o1",
        "o1-mini": "o1-mini",
    }

    def __init__(self, api_key: Optional[str] = None, client=None):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key. Uses settings or OPENAI_API_KEY env var if not provided.
            client: Pre-built AsyncOpenAI client
        """
        self.api_key = api_key or settings.openai_api_key or os.environ.get("OPENAI_API_KEY")
        self._client = client

    @property
    def name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o"

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=settings.api_timeout_seconds)
        return self._client

    def _resolve_model(self, model: Optional[str]) -> str:
        # The engine-wide default is a LiteLLM string for another vendor
        if model is None or "/" in model:
            return self.default_model
        return self.MODELS.get(model, model)

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        resolved_model = self._resolve_model(model)
        response = await self._get_client().chat.completions.create(
            model=resolved_model,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
        choice = response.choices[0]
        if getattr(choice, "finish_reason", None) == "length":
            logger.warning("Output from %s truncated at %d tokens", resolved_model, max_tokens)

        return LLMResponse(
            content=choice.message.content or "",
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            model=resolved_model,
            provider=self.name,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)
