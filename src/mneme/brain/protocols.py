"""Protocol definitions for Mneme's external collaborators.

These protocols define the interfaces the memory layer depends on,
enabling loose coupling and easier testing. Dependencies point one way:
the short-term store only sees ``FactSinkProtocol`` and
``SummarizerProtocol``; the long-term store only sees
``VectorStoreProtocol`` and ``LanguageModelProtocol``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol

from .llm_clients import LLMResponse

if TYPE_CHECKING:
    from mneme.memory.types import MemoryMessage, MemorySource
    from mneme.memory.vector_store import VectorDocument, VectorSearchHit


class LanguageModelProtocol(Protocol):
    """
    Protocol for chat language model clients.

    Used for conversation summaries and fact extraction.
    """

    async def invoke(
        self,
        messages: Sequence[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send role/content messages and return the completion."""
        ...


class EmbeddingProviderProtocol(Protocol):
    """
    Protocol for embedding providers.

    ``is_configured`` is False when the provider cannot be used at all
    (for example, no API key).
    """

    @property
    def is_configured(self) -> bool:
        """Whether the provider has credentials and a model."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts, preserving order."""
        ...


class VectorStoreProtocol(Protocol):
    """
    Protocol for the vector database backing long-term memory.

    One collection per chat. Every method degrades to an empty/False/None
    result when the backend is unavailable.
    """

    def is_ready(self) -> bool:
        """Whether the backend is connected."""
        ...

    async def add(self, chat_id: str, documents: Sequence[VectorDocument]) -> bool:
        """Embed and store documents."""
        ...

    async def get(self, chat_id: str, document_id: str) -> VectorDocument | None:
        """Fetch one document by id."""
        ...

    async def get_all(self, chat_id: str) -> list[VectorDocument]:
        """Fetch every document in a chat's collection."""
        ...

    async def update(
        self,
        chat_id: str,
        document_id: str,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Replace a document's content and/or metadata."""
        ...

    async def delete(self, chat_id: str, document_id: str) -> bool:
        """Delete one document."""
        ...

    async def search(
        self,
        chat_id: str,
        query: str,
        max_results: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[VectorSearchHit]:
        """Nearest neighbours of ``query``, closest first."""
        ...

    async def clear(self, chat_id: str) -> bool:
        """Drop a chat's whole collection."""
        ...

    async def count(self, chat_id: str) -> int | None:
        """Number of documents in a chat's collection."""
        ...

    async def list_chat_ids(self) -> list[str]:
        """Chats that have a collection."""
        ...


class DocumentStoreProtocol(Protocol):
    """
    Protocol for durable per-key JSON document storage.
    """

    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        """Load a document or None."""
        ...

    async def put(self, namespace: str, key: str, document: dict[str, Any]) -> None:
        """Insert or replace a document."""
        ...

    async def delete(self, namespace: str, key: str) -> bool:
        """Remove a document."""
        ...


class FactSinkProtocol(Protocol):
    """
    Protocol for whatever turns evicted conversation into long-term facts.
    """

    async def extract_and_save(
        self,
        chat_id: str,
        messages: Sequence[MemoryMessage],
        source: MemorySource,
    ) -> int:
        """Extract durable facts and store them. Returns items processed."""
        ...


class SummarizerProtocol(Protocol):
    """
    Protocol for conversation summarizers used during compaction.
    """

    async def summarize(self, chat_id: str, messages: Sequence[MemoryMessage]) -> str:
        """Summarize messages. Empty string means nothing worth keeping."""
        ...

