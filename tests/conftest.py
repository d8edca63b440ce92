"""Shared pytest fixtures for Mneme tests."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any, AsyncGenerator, Callable

import numpy as np
import pytest

from mneme.brain.llm_clients import LLMResponse
from mneme.config import EmbeddingConfig, LLMConfig, MemoryConfig, MnemeConfig, VectorStoreConfig
from mneme.memory.embedding import EmbeddingCache
from mneme.memory.extraction import EXTRACTION_SYSTEM_PROMPT
from mneme.memory.manager import MemoryManager
from mneme.memory.storage import SQLiteDocumentStore
from mneme.memory.vector_store import VectorDocument, VectorSearchHit

EMBEDDING_DIMENSIONS = 256


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embeddings.

    Each lowercase word is hashed into one of 256 buckets, so texts sharing
    words are similar and identical texts are identical vectors.
    """

    def __init__(self) -> None:
        self.configured = True
        self.calls: list[list[str]] = []
        self.fail_with: Exception | None = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    @staticmethod
    def vectorize(text: str) -> list[float]:
        vector = [0.0] * EMBEDDING_DIMENSIONS
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.sha256(word.encode()).hexdigest()[:8], 16) % EMBEDDING_DIMENSIONS
            vector[bucket] += 1.0
        return vector

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_with is not None:
            raise self.fail_with
        return [self.vectorize(t) for t in texts]

    @property
    def texts_embedded(self) -> int:
        return sum(len(batch) for batch in self.calls)


class InMemoryVectorStore:
    """Vector store fake with cosine distance and Chroma-like degradation."""

    def __init__(self, embeddings: EmbeddingCache) -> None:
        self._embeddings = embeddings
        self._collections: dict[str, dict[str, tuple[VectorDocument, list[float]]]] = {}
        self.available = True

    def is_ready(self) -> bool:
        return self.available

    async def add(self, chat_id: str, documents: Sequence[VectorDocument]) -> bool:
        if not self.available or not self._embeddings.is_ready():
            return False
        vectors = await self._embeddings.embed_batch([d.content for d in documents])
        collection = self._collections.setdefault(chat_id, {})
        for document, vector in zip(documents, vectors):
            collection[document.id] = (
                VectorDocument(document.id, document.content, dict(document.metadata)),
                vector,
            )
        return True

    async def get(self, chat_id: str, document_id: str) -> VectorDocument | None:
        if not self.available:
            return None
        stored = self._collections.get(chat_id, {}).get(document_id)
        if stored is None:
            return None
        document = stored[0]
        return VectorDocument(document.id, document.content, dict(document.metadata))

    async def get_all(self, chat_id: str) -> list[VectorDocument]:
        if not self.available:
            return []
        return [
            VectorDocument(d.id, d.content, dict(d.metadata))
            for d, _ in self._collections.get(chat_id, {}).values()
        ]

    async def update(
        self,
        chat_id: str,
        document_id: str,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        if not self.available:
            return False
        collection = self._collections.get(chat_id, {})
        if document_id not in collection:
            return False
        document, vector = collection[document_id]
        if content is not None:
            document.content = content
            vector = await self._embeddings.embed(content)
        if metadata is not None:
            document.metadata = dict(metadata)
        collection[document_id] = (document, vector)
        return True

    async def delete(self, chat_id: str, document_id: str) -> bool:
        if not self.available:
            return False
        self._collections.get(chat_id, {}).pop(document_id, None)
        return True

    async def search(
        self,
        chat_id: str,
        query: str,
        max_results: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[VectorSearchHit]:
        if not self.available or not self._embeddings.is_ready():
            return []
        collection = self._collections.get(chat_id, {})
        if not collection:
            return []

        query_vector = np.asarray(await self._embeddings.embed(query))
        hits = []
        for document, vector in collection.values():
            if where and any(document.metadata.get(k) != v for k, v in where.items()):
                continue
            v = np.asarray(vector)
            denominator = float(np.linalg.norm(query_vector) * np.linalg.norm(v))
            similarity = float(np.dot(query_vector, v)) / denominator if denominator else 0.0
            hits.append(
                VectorSearchHit(document.id, document.content, dict(document.metadata), 1.0 - similarity)
            )
        hits.sort(key=lambda hit: hit.distance)
        return hits[:max_results]

    async def clear(self, chat_id: str) -> bool:
        if not self.available:
            return False
        self._collections.pop(chat_id, None)
        return True

    async def count(self, chat_id: str) -> int | None:
        if not self.available:
            return None
        return len(self._collections.get(chat_id, {}))

    async def list_chat_ids(self) -> list[str]:
        if not self.available:
            return []
        return sorted(self._collections)


Reply = str | Exception | Callable[[list[dict[str, str]]], str]


class ScriptedLLM:
    """Language model fake.

    Extraction prompts get ``extraction``; anything else gets ``summary``.
    A reply may be a string, an exception to raise, or a callable taking
    the messages.
    """

    def __init__(self, extraction: Reply = "[]", summary: Reply = "NOTHING_IMPORTANT") -> None:
        self.extraction = extraction
        self.summary = summary
        self.calls: list[list[dict[str, str]]] = []

    @staticmethod
    def is_extraction(messages: list[dict[str, str]]) -> bool:
        return bool(messages) and messages[0]["content"] == EXTRACTION_SYSTEM_PROMPT

    @property
    def extraction_calls(self) -> list[list[dict[str, str]]]:
        return [m for m in self.calls if self.is_extraction(m)]

    @property
    def summary_calls(self) -> list[list[dict[str, str]]]:
        return [m for m in self.calls if not self.is_extraction(m)]

    async def invoke(
        self,
        messages: Sequence[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        messages = list(messages)
        self.calls.append(messages)
        reply = self.extraction if self.is_extraction(messages) else self.summary
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(messages)
        return LLMResponse(content=reply, model="scripted")


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for test data."""
    return tmp_path


@pytest.fixture
def test_config(temp_dir: Path) -> MnemeConfig:
    """Return test configuration with a temporary data directory and no API keys."""
    return MnemeConfig(
        name="TestMneme",
        version="0.1.0-test",
        data_dir=str(temp_dir / "data"),
        log_level="DEBUG",
        llm=LLMConfig(api_key=""),
        embedding=EmbeddingConfig(api_key=""),
        vector_store=VectorStoreConfig(enabled=False),
        memory=MemoryConfig(),
    )


@pytest.fixture
def fake_embeddings() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_cache(fake_embeddings: FakeEmbeddingProvider) -> EmbeddingCache:
    return EmbeddingCache(fake_embeddings)


@pytest.fixture
def vector_store(embedding_cache: EmbeddingCache) -> InMemoryVectorStore:
    return InMemoryVectorStore(embedding_cache)


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def make_llm() -> type[ScriptedLLM]:
    """Return the scripted model class for tests that need custom replies."""
    return ScriptedLLM


@pytest.fixture
async def document_store(temp_dir: Path) -> AsyncGenerator[SQLiteDocumentStore, None]:
    """Yield an initialized SQLite document store in a temporary directory."""
    store = SQLiteDocumentStore(temp_dir / "memory.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def memory_manager(
    test_config: MnemeConfig,
    scripted_llm: ScriptedLLM,
    embedding_cache: EmbeddingCache,
    vector_store: InMemoryVectorStore,
    document_store: SQLiteDocumentStore,
) -> AsyncGenerator[MemoryManager, None]:
    """Yield an initialized MemoryManager wired to fakes."""
    manager = MemoryManager(
        test_config,
        llm=scripted_llm,
        vector_store=vector_store,
        document_store=document_store,
        embeddings=embedding_cache,
    )
    await manager.initialize()
    yield manager
    await manager.close()
