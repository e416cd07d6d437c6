# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable Chat Model
# =============================================================================
#
# Common async interface for chat completions, with implementations for
# Anthropic (Claude) and any OpenAI-compatible API (OpenAI, DeepSeek, Qwen,
# Gemini's OpenAI endpoint, ...).
#
# Providers are constructed explicitly with their key/model/base_url and
# passed to the services that need them; create_llm_provider() maps Settings
# to the right class.
#
# ERROR TRANSLATION:
#   SDK RateLimitError                         → errors.RateLimitError
#   connection / timeout / 5xx from provider   → errors.ChatModelUnavailableError
#   anything else from the SDK                 → errors.ChatModelError
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider — system prompt as first message
#   └── create_llm_provider()    — factory from Settings
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import anthropic
import openai

from paperchat.errors import (
    ChatModelError,
    ChatModelUnavailableError,
    RateLimitError,
)

if TYPE_CHECKING:
    from paperchat.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Provider-neutral completion result."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Chat-completion capability."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Dicts with "role" ("user" / "assistant") and "content".
            system: System prompt, placed the way each provider expects.
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.

        Raises:
            RateLimitError, ChatModelUnavailableError, ChatModelError
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native async SDK.

    Anthropic takes the system prompt as a top-level `system=` kwarg, NOT as
    a message with role "system".
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-6",
        temperature: float = 0.3,
        max_tokens: int = 2048,
    ) -> None:
        if not api_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as exc:
            logger.warning("Anthropic rate limit: %s", exc)
            raise RateLimitError() from exc
        except (
            anthropic.APIConnectionError,
            anthropic.InternalServerError,
        ) as exc:
            logger.error("Anthropic unavailable: %s", exc)
            raise ChatModelUnavailableError(str(exc)) from exc
        except anthropic.APIError as exc:
            logger.error("Anthropic API error: %s", exc)
            raise ChatModelError(str(exc)) from exc

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions spec.

        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 2048,
    ) -> None:
        if not api_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model, base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=all_messages,
                max_tokens=max_tokens or self._max_tokens,
                temperature=(
                    temperature if temperature is not None else self._temperature
                ),
            )
        except openai.RateLimitError as exc:
            logger.warning("OpenAI-compatible rate limit: %s", exc)
            raise RateLimitError() from exc
        except (openai.APIConnectionError, openai.InternalServerError) as exc:
            logger.error("OpenAI-compatible provider unavailable: %s", exc)
            raise ChatModelUnavailableError(str(exc)) from exc
        except openai.APIError as exc:
            logger.error("OpenAI-compatible API error: %s", exc)
            raise ChatModelError(str(exc)) from exc

        content = response.choices[0].message.content or ""
        usage = response.usage

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def create_llm_provider(
    settings: Settings,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build the provider selected by `settings.llm_provider`:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider
    """
    if settings.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider(
            api_key=settings.llm_api_key or settings.openai_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    return AnthropicProvider(
        api_key=settings.llm_api_key or settings.anthropic_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )
