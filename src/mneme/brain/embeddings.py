"""Embedding provider backed by an OpenAI-compatible embeddings endpoint."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider:
    """
    Generates text embeddings via an OpenAI-compatible API.

    Callers should go through ``EmbeddingCache`` rather than using this
    directly, so identical text is embedded once.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        api_key: str = "",
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 30.0,
    ) -> None:
        """Initialize the provider.

        Args:
            model: Embedding model name.
            api_key: API key. Empty leaves the provider unconfigured.
            base_url: Base URL for the provider API.
            timeout: Request timeout in seconds.
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url

        self._http_client = httpx.AsyncClient(timeout=timeout)
        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or "unset",
            http_client=self._http_client,
        )

        if api_key:
            logger.info(f"Embedding provider initialized: model={model}, base_url={base_url}")
        else:
            logger.warning("No embedding API key set - embeddings will not work")

    @property
    def is_configured(self) -> bool:
        """True when an API key was supplied."""
        return bool(self.api_key)

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts in one request, preserving order."""
        if not texts:
            return []

        response = await self._client.embeddings.create(model=self.model, input=list(texts))
        # The API may return items out of order; each carries its input index
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()
