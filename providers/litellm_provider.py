"""LiteLLM-backed provider. Default implementation for all inference calls."""

from typing import Optional

from config import settings
from .base import InferenceProvider, LLMResponse


# LiteLLM model strings: provider/model-name (OpenAI can omit prefix)
DEFAULT_MODELS = {
    "anthropic": "anthropic/claude-sonnet-4-20250514",
    "openai": "gpt-4o-mini",
}

# Map provider + optional model -> LiteLLM model string
MODEL_ALIASES = {
    "anthropic": {
        None: "anthropic/claude-sonnet-4-20250514",
        "claude-sonnet": "anthropic/claude-sonnet-4-20250514",
        "claude-opus": "anthropic/claude-opus-4-20250514",
        "claude-haiku": "anthropic/claude-3-5-haiku-20241022",
    },
    "openai": {
        None: "gpt-4o-mini",
        "gpt-4o": "gpt-4o",
        "gpt-4o-mini": "gpt-4o-mini",
        "gpt-4-turbo": "gpt-4-turbo",
        "o1": "o1",
        "o1-mini": "o1-mini",
    },
}


def to_litellm_model(model: Optional[str]) -> str:
    """Map a short alias (claude-sonnet, gpt-4o) to a LiteLLM model string."""
    if not model:
        return settings.default_model
    model_lower = model.lower()
    for aliases in MODEL_ALIASES.values():
        # Prefer longest alias match first (e.g. gpt-4o-mini before gpt-4o)
        for alias in sorted((a for a in aliases if a), key=len, reverse=True):
            if model_lower == alias:
                return aliases[alias]
    return model


class LiteLLMProvider(InferenceProvider):
    """Single provider that delegates to litellm.acompletion()."""

    def __init__(self, default_model: Optional[str] = None, metadata: Optional[dict] = None):
        """Initialize with the LiteLLM model string to use by default.

        Args:
            default_model: LiteLLM model string (e.g. gpt-4o-mini, anthropic/claude-sonnet-4-20250514).
            metadata: Optional dict passed to litellm (e.g. stage, agent) for callbacks.
        """
        self._default_model = to_litellm_model(default_model)
        self._metadata = metadata or {}

    @property
    def name(self) -> str:
        return "litellm"

    @property
    def default_model(self) -> str:
        return self._default_model

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        import litellm

        resolved_model = to_litellm_model(model) if model else self._default_model
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        response = await litellm.acompletion(
            model=resolved_model,
            messages=messages,
            max_tokens=max_tokens,
            timeout=settings.api_timeout_seconds,
            metadata={**self._metadata},
        )

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        hidden = getattr(response, "_hidden_params", None) or {}
        cost = float(hidden.get("response_cost", 0) or 0)
        model_id = getattr(response, "model", None) or resolved_model

        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model_id,
            provider=self.name,
            cost=cost,
        )

    def is_available(self) -> bool:
        """LiteLLM reads API keys from env; we consider it available if the model is set."""
        return bool(self._default_model)
