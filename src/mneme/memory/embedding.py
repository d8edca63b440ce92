"""Embedding generation memoized by content hash.

Every embedding request in the process goes through one ``EmbeddingCache``
so identical text is only ever sent to the provider once, whichever memory
layer asks for it.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from collections.abc import Sequence
from typing import TYPE_CHECKING, TypeVar

import numpy as np

if TYPE_CHECKING:
    from mneme.brain.protocols import EmbeddingProviderProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EmbeddingUnavailableError(RuntimeError):
    """Raised when embeddings are requested but no provider is configured."""


def text_hash(text: str) -> str:
    """SHA-256 hex digest of the exact UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1].

    Returns 0.0 if either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in dimension
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Embeddings must have the same dimension ({va.shape} vs {vb.shape})")

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def top_k(
    query: Sequence[float],
    candidates: Sequence[tuple[Sequence[float], T]],
    k: int = 5,
    min_score: float = 0.3,
) -> list[tuple[float, T]]:
    """Rank candidates by cosine similarity to ``query``.

    Args:
        query: Query embedding
        candidates: (embedding, payload) pairs
        k: Maximum results to return
        min_score: Candidates scoring below this are dropped

    Returns:
        (score, payload) pairs, best first
    """
    scored = [(cosine_similarity(query, embedding), item) for embedding, item in candidates]
    scored = [pair for pair in scored if pair[0] >= min_score]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored[:k]


class EmbeddingCache:
    """Memoizing front for an embedding provider.

    Entries are keyed by ``text_hash(text)``. The cache is filled on every
    miss and never expires unless ``max_entries`` is set, in which case the
    least recently used entry is evicted first.

    Example:
        >>> cache = EmbeddingCache(provider)
        >>> vector = await cache.embed("User lives in Gothenburg")
        >>> vector is (await cache.embed("User lives in Gothenburg"))
        True
    """

    def __init__(
        self,
        provider: EmbeddingProviderProtocol | None,
        max_entries: int | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            provider: Embedding capability. None means embeddings are unavailable.
            max_entries: LRU bound. None keeps every entry for the process lifetime.
        """
        self._provider = provider
        self._max_entries = max_entries
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

        if not self.is_ready():
            logger.warning("Embedding provider not configured - semantic features disabled")

    def is_ready(self) -> bool:
        """True when the underlying provider was configured."""
        return self._provider is not None and bool(getattr(self._provider, "is_configured", True))

    def hash(self, text: str) -> str:
        """Fingerprint used as the cache and dedup key."""
        return text_hash(text)

    def _lookup(self, key: str) -> list[float] | None:
        vector = self._cache.get(key)
        if vector is not None:
            self._cache.move_to_end(key)
        return vector

    def _store(self, key: str, vector: list[float]) -> None:
        self._cache[key] = vector
        self._cache.move_to_end(key)
        if self._max_entries is not None:
            while len(self._cache) > self._max_entries:
                self._cache.popitem(last=False)

    def _require_provider(self) -> EmbeddingProviderProtocol:
        if not self.is_ready() or self._provider is None:
            raise EmbeddingUnavailableError("Embedding provider not configured")
        return self._provider

    async def embed(self, text: str) -> list[float]:
        """Embedding for a single text.

        Raises:
            EmbeddingUnavailableError: If no provider is configured
        """
        provider = self._require_provider()
        key = self.hash(text)

        cached = self._lookup(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        try:
            vector = list(await provider.embed(text))
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e}")
            raise

        self._store(key, vector)
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embeddings for many texts, in input order.

        Only texts missing from the cache are sent to the provider, in one
        call. If that call fails the whole batch fails.

        Raises:
            EmbeddingUnavailableError: If no provider is configured
        """
        provider = self._require_provider()
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        pending: dict[str, list[int]] = {}
        pending_texts: list[str] = []

        for index, text in enumerate(texts):
            key = self.hash(text)
            cached = self._lookup(key)
            if cached is not None:
                self.hits += 1
                results[index] = cached
            elif key in pending:
                pending[key].append(index)
            else:
                self.misses += 1
                pending[key] = [index]
                pending_texts.append(text)

        if pending_texts:
            try:
                vectors = await provider.embed_batch(pending_texts)
            except Exception as e:
                logger.error(f"Failed to generate embeddings for {len(pending_texts)} texts: {e}")
                raise

            if len(vectors) != len(pending_texts):
                raise RuntimeError(
                    f"Embedding provider returned {len(vectors)} vectors for {len(pending_texts)} texts"
                )

            for text, vector in zip(pending_texts, vectors):
                key = self.hash(text)
                vector = list(vector)
                self._store(key, vector)
                for index in pending[key]:
                    results[index] = vector

        return [vector for vector in results if vector is not None]

    def clear(self) -> None:
        """Drop every cached embedding."""
        self._cache.clear()
        logger.debug("Embedding cache cleared")

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def max_entries(self) -> int | None:
        """LRU bound, or None when unbounded."""
        return self._max_entries

    def get_stats(self) -> dict[str, int | float]:
        """Cache size and hit statistics."""
        total = self.hits + self.misses
        return {
            "size": len(self._cache),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
        }
