"""Tests for inference providers and the provider factory."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import settings
from providers import LLMResponse, StubProvider, get_provider, list_providers
from providers.anthropic_provider import AnthropicProvider
from providers.openai_provider import OpenAIProvider
from providers.litellm_provider import LiteLLMProvider, to_litellm_model
from providers.stub_provider import BUILDS_ON


class TestToLiteLLMModel:
    """Alias mapping to LiteLLM model strings."""

    def test_no_model_uses_default(self):
        assert to_litellm_model(None) == settings.default_model

    def test_aliases(self):
        assert to_litellm_model("claude-haiku") == "anthropic/claude-3-5-haiku-20241022"
        assert to_litellm_model("GPT-4o") == "gpt-4o"
        assert to_litellm_model("gpt-4o-mini") == "gpt-4o-mini"

    def test_unknown_model_passes_through(self):
        assert to_litellm_model("gemini/gemini-2.0-flash") == "gemini/gemini-2.0-flash"


class TestFactory:
    def test_stub_provider(self):
        provider = get_provider("stub", model="offline")
        assert isinstance(provider, StubProvider)
        assert provider.default_model == "offline"

    def test_aliases_resolve(self):
        assert isinstance(get_provider("claude"), AnthropicProvider)
        assert isinstance(get_provider("LiteLLM", model="claude-opus"), LiteLLMProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_provider("nope")

    def test_list_providers_skips_aliases(self):
        available = list_providers()
        assert available["stub"] is True
        assert "claude" not in available
        assert "gpt" not in available


class TestLiteLLMProvider:
    """LiteLLMProvider with a mocked litellm.acompletion."""

    @pytest.fixture
    def completion_response(self):
        resp = MagicMock()
        resp.choices = [MagicMock()]
        resp.choices[0].message.content = "## Overview\n\nHello."
        resp.usage = MagicMock(prompt_tokens=10, completion_tokens=5)
        resp._hidden_params = {"response_cost": 0.001}
        resp.model = "gpt-4o-mini"
        return resp

    async def test_complete_returns_llm_response(self, completion_response):
        with patch("litellm.acompletion", new=AsyncMock(return_value=completion_response)) as acompletion:
            provider = LiteLLMProvider(default_model="gpt-4o-mini", metadata={"stage": "prd"})
            result = await provider.complete("You are helpful.", "Hi", max_tokens=100)

        assert isinstance(result, LLMResponse)
        assert result.content == "## Overview\n\nHello."
        assert result.input_tokens == 10
        assert result.output_tokens == 5
        assert result.cost == 0.001
        assert result.provider == "litellm"
        kwargs = acompletion.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 100
        assert kwargs["metadata"] == {"stage": "prd"}
        assert kwargs["messages"][0] == {"role": "system", "content": "You are helpful."}

    async def test_model_override_is_mapped(self, completion_response):
        with patch("litellm.acompletion", new=AsyncMock(return_value=completion_response)) as acompletion:
            await LiteLLMProvider().complete("s", "u", model="claude-sonnet")
        assert acompletion.call_args.kwargs["model"] == "anthropic/claude-sonnet-4-20250514"

    async def test_generate_appends_context(self, completion_response):
        with patch("litellm.acompletion", new=AsyncMock(return_value=completion_response)) as acompletion:
            await LiteLLMProvider("gpt-4o").generate("# Stage: PRD", "Domains: frontend")
        user_message = acompletion.call_args.kwargs["messages"][1]["content"]
        assert user_message == "# Stage: PRD\n\n# Context\n\nDomains: frontend"


class TestStubProvider:
    """Deterministic offline output."""

    async def test_echoes_requested_headings(self):
        prompt = "# Idea\n\nA recipe planner\n\n# Output format\n\nUse exactly these section headings:\n\n## Goals\n## User Stories"
        response = await StubProvider().complete("system", prompt)
        assert "## Goals" in response.content
        assert "Goals for A recipe planner." in response.content
        assert "As a user, I want" in response.content
        assert response.provider == "stub"

    async def test_carries_previous_sections_forward(self):
        prompt = (
            "# Idea\n\nA recipe planner\n\n"
            "# Previous stage output (idea_definition)\n\n## Problem\n\ntext\n\n## Scope\n\ntext\n\n"
            "# Output format\n\n## Overview"
        )
        response = await StubProvider().complete("system", prompt)
        assert f"{BUILDS_ON}Problem, Scope" in response.content

    async def test_deterministic(self):
        first = await StubProvider().generate("# Idea\n\nX\n\n# Output format\n\n## A", "")
        second = await StubProvider().generate("# Idea\n\nX\n\n# Output format\n\n## A", "")
        assert first.content == second.content


class TestSdkProviders:
    """Direct SDK providers with injected clients."""

    async def test_anthropic_strips_litellm_prefix(self, caplog):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=MagicMock(
            content=[MagicMock(type="text", text="## Goals\n\n"), MagicMock(type="text", text="Ship it.")],
            usage=MagicMock(input_tokens=7, output_tokens=3),
            stop_reason="max_tokens",
        ))
        provider = AnthropicProvider(api_key="test", client=client)
        result = await provider.complete("s", "u", model="anthropic/claude-opus-4-20250514", max_tokens=50)

        assert client.messages.create.call_args.kwargs["model"] == "claude-opus-4-20250514"
        assert result.content == "## Goals\n\nShip it."
        assert result.provider == "anthropic"
        assert "truncated" in caplog.text

    async def test_openai_ignores_foreign_default_model(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=MagicMock(
            choices=[MagicMock(finish_reason="stop", message=MagicMock(content="ok"))],
            usage=MagicMock(prompt_tokens=2, completion_tokens=1),
        ))
        provider = OpenAIProvider(api_key="test", client=client)
        result = await provider.complete("s", "u", model="anthropic/claude-sonnet-4-20250514")
        assert client.chat.completions.create.call_args.kwargs["model"] == "gpt-4o"
        assert result.content == "ok"
        assert result.input_tokens == 2
