"""LLM client implementations for Mneme.

Provides a chat-completion client for any OpenAI-compatible endpoint
(OpenRouter, Ollama, OpenAI). The memory layer uses it for conversation
summaries and fact extraction.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from openai import APIConnectionError, APIError, AsyncOpenAI

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from any LLM client."""

    content: str
    model: str
    tokens_used: int | None = None
    latency_ms: int | None = None

    def __str__(self) -> str:
        return f"LLMResponse(model={self.model}, content_length={len(self.content)})"


class LLMClient:
    """Base class for LLM clients.

    All LLM clients must implement the invoke() method with this signature.
    """

    async def invoke(
        self,
        messages: Sequence[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release network resources."""


class OpenAIChatClient(LLMClient):
    """
    Client for OpenAI-compatible chat completion APIs.

    Works against OpenRouter, OpenAI or a local Ollama server via its
    /v1 endpoint.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the client.

        Args:
            model: Model name to use.
            api_key: API key for the provider.
            base_url: Base URL for the provider API.
            temperature: Default sampling temperature.
            max_tokens: Default completion limit.
            timeout: Request timeout in seconds.
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        # Create HTTP client with connection pooling
        self._http_client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or "unset",
            http_client=self._http_client,
        )

    @property
    def is_configured(self) -> bool:
        """True when an API key was supplied."""
        return bool(self.api_key)

    async def invoke(
        self,
        messages: Sequence[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a chat completion request.

        Args:
            messages: role/content dicts (system, user, assistant).
            temperature: Sampling temperature. None uses the client default.
            max_tokens: Maximum tokens to generate. None uses the client default.

        Returns:
            LLMResponse with generated content and metadata.

        Raises:
            RuntimeError: If no API key is configured.
            APIConnectionError: If connection to the provider fails.
            APIError: If the API request fails.
        """
        if not self.api_key:
            raise RuntimeError("API key is required for the language model")

        start_time = time.time()

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=list(messages),
                temperature=temperature if temperature is not None else self.temperature,
                max_tokens=max_tokens if max_tokens is not None else self.max_tokens,
            )
        except APIConnectionError as e:
            logger.error(f"Failed to connect to {self.base_url}: {e}")
            raise
        except APIError as e:
            logger.error(f"LLM API error: {e}")
            raise

        latency_ms = int((time.time() - start_time) * 1000)

        content = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage else None

        logger.debug(f"LLM response: model={self.model}, tokens={tokens_used}, latency={latency_ms}ms")

        return LLMResponse(
            content=content,
            model=self.model,
            tokens_used=tokens_used,
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def __aenter__(self) -> OpenAIChatClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
