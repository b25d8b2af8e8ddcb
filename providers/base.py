"""Base inference provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from config import settings


DEFAULT_SYSTEM_PROMPT = (
    "You are the orchestrator of a prompt chain that refines a product idea into "
    "implementation-ready artifacts. Answer in Markdown using the requested section headings."
)


@dataclass
class LLMResponse:
    """Standardized response from any inference provider."""
    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: str
    cost: float = 0.0


class InferenceProvider(ABC):
    """Abstract base class for inference providers.

    The engine never writes stage content itself; it decides when and with
    what context a provider is called.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (litellm, anthropic, openai, stub)."""
        pass

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Default model for this provider."""
        pass

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Generate a completion.

        Args:
            system_prompt: System/instruction prompt
            user_message: User message/query
            model: Model to use (defaults to provider's default)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with content and token counts
        """
        pass

    async def generate(
        self,
        stage_prompt: str,
        context_snapshot: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LLMResponse:
        """Produce stage or agent output from a prompt and a context snapshot."""
        user_message = stage_prompt
        if context_snapshot.strip():
            user_message = f"{stage_prompt}\n\n# Context\n\n{context_snapshot}"
        return await self.complete(
            system_prompt or DEFAULT_SYSTEM_PROMPT,
            user_message,
            model=model,
            max_tokens=settings.max_tokens_per_call,
        )

    def is_available(self) -> bool:
        """Check if this provider is available (API key set, etc.)."""
        return True
