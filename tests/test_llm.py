# =============================================================================
# Unit Tests — LLM Providers
# =============================================================================
#
# The SDK clients are replaced with AsyncMocks; SDK exceptions are built
# against a dummy httpx request so the translation table can be checked
# without network access.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from paperchat.config import Settings
from paperchat.errors import (
    ChatModelError,
    ChatModelUnavailableError,
    RateLimitError,
)
from paperchat.services.llm import (
    AnthropicProvider,
    OpenAICompatibleProvider,
    create_llm_provider,
)

MESSAGES = [{"role": "user", "content": "What is attention?"}]


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _response(status: int, url: str) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", url))


# ---------------------------------------------------------------------------
# Test: Anthropic
# ---------------------------------------------------------------------------

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


def _anthropic(create: AsyncMock) -> AnthropicProvider:
    provider = AnthropicProvider(api_key="test-key", model="claude-test")
    provider._client = MagicMock()
    provider._client.messages.create = create
    return provider


class TestAnthropicProvider:
    def test_missing_key_rejected(self):
        with pytest.raises(ValueError, match="Anthropic API key"):
            AnthropicProvider(api_key="")

    def test_system_prompt_is_top_level_kwarg(self):
        create = AsyncMock(return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="thinking"),
                SimpleNamespace(type="text", text="Attention weighs tokens."),
            ],
            model="claude-test",
            usage=SimpleNamespace(input_tokens=12, output_tokens=5),
        ))
        provider = _anthropic(create)

        response = _run(provider.complete(MESSAGES, system="Be brief."))

        assert response.content == "Attention weighs tokens."
        assert response.input_tokens == 12
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "Be brief."
        assert kwargs["messages"] == MESSAGES
        assert kwargs["temperature"] == 0.3

    def test_rate_limit_translated(self):
        create = AsyncMock(side_effect=anthropic.RateLimitError(
            "slow down", response=_response(429, ANTHROPIC_URL), body=None,
        ))
        with pytest.raises(RateLimitError):
            _run(_anthropic(create).complete(MESSAGES))

    def test_connection_error_is_transient(self):
        create = AsyncMock(side_effect=anthropic.APIConnectionError(
            request=httpx.Request("POST", ANTHROPIC_URL),
        ))
        with pytest.raises(ChatModelUnavailableError) as excinfo:
            _run(_anthropic(create).complete(MESSAGES))
        assert excinfo.value.transient

    def test_bad_request_is_permanent(self):
        create = AsyncMock(side_effect=anthropic.BadRequestError(
            "prompt too long", response=_response(400, ANTHROPIC_URL), body=None,
        ))
        with pytest.raises(ChatModelError) as excinfo:
            _run(_anthropic(create).complete(MESSAGES))
        assert not excinfo.value.transient


# ---------------------------------------------------------------------------
# Test: OpenAI-compatible
# ---------------------------------------------------------------------------

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _openai(create: AsyncMock) -> OpenAICompatibleProvider:
    provider = OpenAICompatibleProvider(api_key="test-key", model="gpt-test")
    provider._client = MagicMock()
    provider._client.chat.completions.create = create
    return provider


class TestOpenAICompatibleProvider:
    def test_missing_key_rejected(self):
        with pytest.raises(ValueError):
            OpenAICompatibleProvider(api_key="", model="gpt-test")

    def test_system_prompt_is_first_message(self):
        create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Answer."))],
            model=None,
            usage=None,
        ))
        provider = _openai(create)

        response = _run(provider.complete(MESSAGES, system="Be brief.", max_tokens=50))

        assert response.content == "Answer."
        assert response.model == "gpt-test"
        assert response.input_tokens == 0
        kwargs = create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
        assert kwargs["messages"][1:] == MESSAGES
        assert kwargs["max_tokens"] == 50

    def test_rate_limit_translated(self):
        create = AsyncMock(side_effect=openai.RateLimitError(
            "quota", response=_response(429, OPENAI_URL), body=None,
        ))
        with pytest.raises(RateLimitError):
            _run(_openai(create).complete(MESSAGES))

    def test_server_error_is_transient(self):
        create = AsyncMock(side_effect=openai.InternalServerError(
            "upstream", response=_response(503, OPENAI_URL), body=None,
        ))
        with pytest.raises(ChatModelUnavailableError):
            _run(_openai(create).complete(MESSAGES))


class TestFactory:
    def test_anthropic_by_default(self):
        settings = Settings(anthropic_api_key="a-key", llm_api_key=None)
        assert isinstance(create_llm_provider(settings), AnthropicProvider)

    def test_openai_compatible(self):
        settings = Settings(
            llm_provider="openai_compatible",
            llm_api_key="k",
            llm_model="deepseek-chat",
            llm_base_url="https://api.deepseek.com/v1",
        )
        assert isinstance(create_llm_provider(settings), OpenAICompatibleProvider)
