"""LLM Provider abstraction layer for OpenAI, Anthropic, Cohere, and OpenRouter.

Provides a unified async interface to multiple LLM backends with
built-in retry logic, rate-limit handling, token streaming and token
tracking.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from agents.errors import AgentError, FatalAgentError, TransientAgentError, is_retryable

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LLMResponse:
    """Standardised response from any LLM provider."""

    text: str
    tokens_used: int
    model: str
    provider: str
    latency_ms: float
    raw: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class LLMProvider(ABC):
    """Provider-agnostic interface that all LLM backends implement."""

    name: str  # e.g. "openai", "anthropic", "cohere"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_key_env: str | None = None,
        base_url: str | None = None,
        timeout: int = 30,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        backoff_multiplier: float = 2.0,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

        # Resolve API key: explicit > env var > raise
        self.api_key = api_key or os.getenv(api_key_env or "")
        if not self.api_key:
            raise ValueError(
                f"No API key for {self.name}. "
                f"Set {api_key_env!r} or pass api_key explicitly."
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 800,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a response with automatic retries on transient errors."""
        last_exc: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                start = time.perf_counter()
                response = await self._call_api(
                    messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs,
                )
                return self._finish(response, start)
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                if not is_retryable(exc):
                    if isinstance(exc, AgentError):
                        raise
                    raise self._fatal(exc, attempt) from exc
                await self._backoff(attempt, exc)

        raise TransientAgentError(
            f"[{self.name}] All {self.max_retries} attempts failed: {last_exc}",
            provider=self.name,
            attempts=self.max_retries,
        ) from last_exc

    async def stream(
        self,
        messages: list[dict[str, str]],
        *,
        on_token: TokenCallback | None = None,
        temperature: float = 0.7,
        max_tokens: int = 800,
        **kwargs: Any,
    ) -> LLMResponse:
        """Stream a response, forwarding every chunk to *on_token* in order.

        A failed stream is only retried while nothing has been forwarded yet,
        so listeners never see the same tokens twice.
        """
        last_exc: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            chunks: list[str] = []
            try:
                start = time.perf_counter()
                async for chunk in self._stream_api(
                    messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs,
                ):
                    if not chunk:
                        continue
                    chunks.append(chunk)
                    if on_token is not None:
                        on_token(chunk)
                text = "".join(chunks)
                return self._finish({"text": text, "tokens_used": len(chunks)}, start)
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                if chunks:
                    raise FatalAgentError(
                        f"[{self.name}] Stream broke after {len(chunks)} chunks: {exc}",
                        provider=self.name,
                        attempts=attempt,
                    ) from exc
                if not is_retryable(exc):
                    if isinstance(exc, AgentError):
                        raise
                    raise self._fatal(exc, attempt) from exc
                await self._backoff(attempt, exc)

        raise TransientAgentError(
            f"[{self.name}] All {self.max_retries} streaming attempts failed: {last_exc}",
            provider=self.name,
            attempts=self.max_retries,
        ) from last_exc

    # ------------------------------------------------------------------
    # Backend-specific implementation (override in subclasses)
    # ------------------------------------------------------------------

    @abstractmethod
    async def _call_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Return ``{"text": ..., "tokens_used": ..., "raw": ...}``."""
        ...

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Yield text chunks. Backends without streaming emit one chunk."""
        response = await self._call_api(
            messages, temperature=temperature, max_tokens=max_tokens, **kwargs
        )
        yield response["text"]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _finish(self, response: dict[str, Any], start: float) -> LLMResponse:
        elapsed = (time.perf_counter() - start) * 1000
        result = LLMResponse(
            text=response["text"],
            tokens_used=response.get("tokens_used", 0),
            model=self.model,
            provider=self.name,
            latency_ms=round(elapsed, 1),
            raw=response.get("raw", {}),
        )
        logger.debug(
            "[%s] %s responded (%d tokens, %.0f ms)",
            self.name,
            self.model,
            result.tokens_used,
            result.latency_ms,
        )
        return result

    def _fatal(self, exc: Exception, attempt: int) -> FatalAgentError:
        return FatalAgentError(
            f"[{self.name}] Non-retryable failure: {exc}",
            provider=self.name,
            attempts=attempt,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay before retry number *attempt* + 1."""
        delay = self.initial_delay * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay)

    async def _backoff(self, attempt: int, exc: BaseException) -> None:
        if attempt >= self.max_retries:
            return
        wait = self.backoff_delay(attempt)
        logger.warning(
            "[%s] Attempt %d/%d failed (%s). Retrying in %.1fs …",
            self.name,
            attempt,
            self.max_retries,
            exc,
            wait,
        )
        await asyncio.sleep(wait)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAIProvider(LLMProvider):
    """Async OpenAI provider using the ``openai>=1.0`` client."""

    name = "openai"

    def __init__(self, model: str = "gpt-4o", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "OPENAI_API_KEY")
        super().__init__(model=model, **kwargs)
        import openai
        self._client = openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> dict[str, Any]:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        choice = response.choices[0]
        usage = response.usage
        return {
            "text": choice.message.content or "",
            "tokens_used": usage.total_tokens if usage else 0,
            "raw": response.model_dump(),
        }

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
            **kwargs,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicProvider(LLMProvider):
    """Async Anthropic provider using the ``anthropic>=0.18`` client."""

    name = "anthropic"

    def __init__(
        self, model: str = "claude-sonnet-4-5", **kwargs: Any
    ) -> None:
        kwargs.setdefault("api_key_env", "ANTHROPIC_API_KEY")
        super().__init__(model=model, **kwargs)
        import anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _create_kwargs(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> dict[str, Any]:
        # Anthropic uses a separate system parameter
        system_msg = ""
        api_messages: list[dict[str, str]] = []
        for msg in messages:
            if msg["role"] == "system":
                system_msg = msg["content"]
            else:
                api_messages.append(msg)

        create_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": api_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            **kwargs,
        }
        if system_msg:
            create_kwargs["system"] = system_msg
        return create_kwargs

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> dict[str, Any]:
        response = await self._client.messages.create(
            **self._create_kwargs(messages, temperature, max_tokens, **kwargs)
        )
        text_block = response.content[0].text if response.content else ""
        tokens = (response.usage.input_tokens + response.usage.output_tokens) if response.usage else 0
        return {
            "text": text_block,
            "tokens_used": tokens,
            "raw": response.model_dump() if hasattr(response, "model_dump") else {},
        }

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        async with self._client.messages.stream(
            **self._create_kwargs(messages, temperature, max_tokens, **kwargs)
        ) as stream:
            async for text in stream.text_stream:
                yield text


# ---------------------------------------------------------------------------
# Cohere
# ---------------------------------------------------------------------------

class CohereProvider(LLMProvider):
    """Async Cohere provider using the ``cohere>=5.0`` client."""

    name = "cohere"

    def __init__(self, model: str = "command-r-plus", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "COHERE_API_KEY")
        super().__init__(model=model, **kwargs)
        import cohere
        self._client = cohere.AsyncClientV2(api_key=self.api_key)

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> dict[str, Any]:
        response = await self._client.chat(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        text = response.message.content[0].text if response.message and response.message.content else ""
        tokens = 0
        if response.usage and response.usage.tokens:
            tokens = (
                (response.usage.tokens.input_tokens or 0)
                + (response.usage.tokens.output_tokens or 0)
            )
        return {
            "text": text,
            "tokens_used": tokens,
            "raw": response.model_dump() if hasattr(response, "model_dump") else {},
        }

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        async for event in self._client.chat_stream(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        ):
            if event.type != "content-delta":
                continue
            text = event.delta.message.content.text if event.delta and event.delta.message else ""
            if text:
                yield text


# ---------------------------------------------------------------------------
# OpenRouter
# ---------------------------------------------------------------------------

class OpenRouterProvider(OpenAIProvider):
    """Async OpenRouter provider using OpenAI-compatible API.

    Model names should use OpenRouter's format, e.g.:
    - "openai/gpt-4o"
    - "anthropic/claude-sonnet-4.5"
    - "meta-llama/llama-3.1-70b-instruct"
    """

    name = "openrouter"

    def __init__(
        self,
        model: str = "openai/gpt-4o",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("api_key_env", "OPENROUTER_API_KEY")
        kwargs["base_url"] = kwargs.get("base_url") or "https://openrouter.ai/api/v1"
        super().__init__(model=model, **kwargs)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, type[LLMProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "cohere": CohereProvider,
    "openrouter": OpenRouterProvider,
}


def register_provider(name: str, cls: type[LLMProvider]) -> None:
    """Make *cls* available to ``create_provider`` under *name*."""
    _PROVIDERS[name.lower()] = cls


def create_provider(name: str, **kwargs: Any) -> LLMProvider:
    """Instantiate an LLM provider by its short name.

    >>> provider = create_provider("openai", model="gpt-4o")
    """
    cls = _PROVIDERS.get(name.lower())
    if cls is None:
        raise ValueError(
            f"Unknown provider {name!r}. Choose from {list(_PROVIDERS)}"
        )
    return cls(**kwargs)
