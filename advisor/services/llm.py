# =============================================================================
# LLM Providers — Blocking and Streaming Generation
# =============================================================================
#
# A turn makes two kinds of model call: one blocking planning call and one
# streaming final-answer call. Both go through an LLMProvider:
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         complete() → messages.create
#   │                             stream()   → messages.stream().text_stream
#   └── OpenAICompatibleProvider  complete() → chat.completions.create
#                                 stream()   → same, stream=True, delta.content
#
#   get_llm_provider()   configured provider, built once per process
#   generate()           single-prompt blocking call; apology on failure
#   generate_stream()    single-prompt streaming call; errors propagate
#
# The SDKs are used directly. Anthropic receives the system prompt as a
# top-level argument; OpenAI-style APIs receive it as the first message.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from advisor.config import settings

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "I'm sorry, I couldn't generate a response right now. "
    "Please try again in a moment."
)

Messages = list[dict[str, str]]


@dataclass
class LLMResponse:
    """Provider-neutral completion result."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    """
    Anything that can complete and stream a chat.

    `messages` holds only "user"/"assistant" turns; the system prompt is
    passed separately. `temperature`, `max_tokens` and `model` override
    the configured defaults when given.
    """

    async def complete(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        ...

    def stream(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        ...


class _ConfiguredProvider:
    """Model name and sampling defaults shared by both SDK providers."""

    def __init__(self, model: str | None) -> None:
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

    def _sampling(
        self, temperature: float | None, max_tokens: int | None, model: str | None = None,
    ) -> dict[str, Any]:
        return {
            "model": model or self._model,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider(_ConfiguredProvider):
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )
        super().__init__(model)
        self._client = AsyncAnthropic(api_key=key)
        logger.info("Using Anthropic provider (model=%s)", self._model)

    def _request(
        self,
        messages: Messages,
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
        model: str | None,
    ) -> dict[str, Any]:
        request = {"messages": messages, **self._sampling(temperature, max_tokens, model)}
        if system:
            request["system"] = system
        return request

    async def complete(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        response = await self._client.messages.create(
            **self._request(messages, system, temperature, max_tokens, model)
        )
        # Thinking blocks may precede the answer; take the first text block
        text = next((b.text for b in response.content if b.type == "text"), "")
        return LLMResponse(
            content=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def stream(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        async with self._client.messages.stream(
            **self._request(messages, system, temperature, max_tokens, model)
        ) as response:
            async for text in response.text_stream:
                if text:
                    yield text


# ---------------------------------------------------------------------------
# OpenAI-compatible (OpenAI, DeepSeek, Qwen, Ollama /v1, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(_ConfiguredProvider):
    """
    Any endpoint speaking the OpenAI chat-completions API.

    Selected with LLM_PROVIDER=openai_compatible; point LLM_BASE_URL at
    the vendor (e.g. https://api.deepseek.com/v1) and set LLM_MODEL.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        key = api_key or settings.llm_api_key or settings.openai_api_key
        if not key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )
        super().__init__(model)

        endpoint = base_url or settings.llm_base_url
        self._client = (
            AsyncOpenAI(api_key=key, base_url=endpoint) if endpoint else AsyncOpenAI(api_key=key)
        )
        logger.info(
            "Using OpenAI-compatible provider (model=%s, endpoint=%s)",
            self._model,
            endpoint or "default",
        )

    @staticmethod
    def _with_system(messages: Messages, system: str | None) -> Messages:
        if not system:
            return list(messages)
        return [{"role": "system", "content": system}, *messages]

    async def complete(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        response = await self._client.chat.completions.create(
            messages=self._with_system(messages, system),
            **self._sampling(temperature, max_tokens, model),
        )
        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def stream(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        chunks = await self._client.chat.completions.create(
            messages=self._with_system(messages, system),
            stream=True,
            **self._sampling(temperature, max_tokens, model),
        )
        async for chunk in chunks:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    The provider named by LLM_PROVIDER ("anthropic" or anything else for
    OpenAI-compatible), created on first call.

    Raises:
        ValueError: If the selected provider has no API key configured.
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "anthropic":
            _provider = AnthropicProvider()
        else:
            _provider = OpenAICompatibleProvider()
    return _provider


# ---------------------------------------------------------------------------
# Single-prompt helpers used by the turn engine
# ---------------------------------------------------------------------------


async def generate(
    llm: LLMProvider,
    prompt: str,
    system: str | None = None,
    model: str | None = None,
) -> str:
    """Blocking call. Never raises; failures return APOLOGY_MESSAGE."""
    try:
        response = await llm.complete(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            model=model,
        )
    except Exception:
        logger.exception("LLM completion failed")
        return APOLOGY_MESSAGE

    logger.debug(
        "LLM completion: model=%s, tokens=%d+%d",
        response.model, response.input_tokens, response.output_tokens,
    )
    return response.content


async def generate_stream(
    llm: LLMProvider,
    prompt: str,
    system: str | None = None,
    model: str | None = None,
) -> AsyncIterator[str]:
    """Streaming call. Provider errors propagate to the consumer."""
    async for increment in llm.stream(
        messages=[{"role": "user", "content": prompt}],
        system=system,
        model=model,
    ):
        yield increment
