"""Hybrid search across both memory layers.

Keeps a per-chat manifest of embedded texts from the short-term window and
from long-term memory, and ranks them by a weighted fusion of semantic
similarity and keyword overlap.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from mneme.brain.protocols import DocumentStoreProtocol
from mneme.memory.embedding import EmbeddingCache, top_k
from mneme.memory.longterm import KEYWORD_MATCH_SCORE, LongTermStore
from mneme.memory.storage import StorageError
from mneme.memory.types import (
    EmbeddingEntry,
    EmbeddingManifest,
    IndexSource,
    LongTermEntry,
    MemoryMessage,
    MemorySearchResult,
    utc_now,
)

logger = logging.getLogger(__name__)

NAMESPACE = "embeddings"
SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3
ALL_SOURCES = frozenset({IndexSource.SHORT_TERM, IndexSource.LONG_TERM})


@dataclass
class IndexItem:
    """A piece of text to index, with the id and time it should carry."""

    text: str
    id: str = field(default_factory=lambda: f"st_{secrets.token_hex(6)}")
    created_at: str = field(default_factory=utc_now)


def keyword_scores(query: str, texts: Sequence[str]) -> dict[int, float]:
    """Keyword overlap of ``query`` with each text.

    The query is lowercased and split on whitespace; words of two characters
    or fewer are ignored. A text scores the fraction of query words found as
    substrings of it. Texts with no match are left out.

    Returns:
        Mapping of text position to score
    """
    words = [w for w in query.lower().split() if len(w) > 2]
    if not words:
        return {}

    scores = {}
    for index, text in enumerate(texts):
        lowered = text.lower()
        matches = sum(1 for word in words if word in lowered)
        if matches:
            scores[index] = matches / len(words)
    return scores


def fuse_scores(
    semantic: dict[str, float],
    keyword: dict[str, float],
    min_score: float,
    semantic_weight: float = SEMANTIC_WEIGHT,
    keyword_weight: float = KEYWORD_WEIGHT,
) -> list[tuple[str, float]]:
    """Weighted union of two score maps keyed by entry id.

    A signal missing for an id counts as 0. Combined scores below
    ``min_score`` are dropped. Ties keep semantic hits first, in their
    given order, then keyword-only hits in theirs.

    Returns:
        (id, combined score) pairs, best first
    """
    combined = {
        entry_id: semantic.get(entry_id, 0.0) * semantic_weight + keyword.get(entry_id, 0.0) * keyword_weight
        for entry_id in dict.fromkeys([*semantic, *keyword])
    }
    ranked = [(entry_id, score) for entry_id, score in combined.items() if score >= min_score]
    ranked.sort(key=lambda pair: pair[1], reverse=True)
    return ranked


class HybridIndex:
    """Per-chat embedding manifest with semantic + keyword retrieval.

    Indexing is idempotent by content hash. When embeddings are unavailable
    (or fail during a search), search falls back to the long-term store's
    keyword matcher.

    Example:
        >>> index = HybridIndex(documents, cache, long_term)
        >>> await index.index_messages("chat-1", messages)
        >>> results = await index.search("chat-1", "where does the user live")
    """

    def __init__(
        self,
        document_store: DocumentStoreProtocol,
        embeddings: EmbeddingCache,
        long_term: LongTermStore | None = None,
        semantic_weight: float = SEMANTIC_WEIGHT,
        keyword_weight: float = KEYWORD_WEIGHT,
    ) -> None:
        """Initialize the index.

        Args:
            document_store: Durable storage for manifests.
            embeddings: Shared embedding cache.
            long_term: Keyword fallback when embeddings are unavailable.
            semantic_weight: Weight of cosine similarity in the fused score.
            keyword_weight: Weight of keyword overlap in the fused score.
        """
        self._documents = document_store
        self._embeddings = embeddings
        self._long_term = long_term
        self._semantic_weight = semantic_weight
        self._keyword_weight = keyword_weight
        self._manifests: dict[str, EmbeddingManifest] = {}

    async def _load(self, chat_id: str) -> EmbeddingManifest:
        cached = self._manifests.get(chat_id)
        if cached is not None:
            return cached

        manifest = EmbeddingManifest(chat_id=chat_id)
        try:
            data = await self._documents.get(NAMESPACE, chat_id)
        except StorageError as e:
            logger.error(f"Failed to load embeddings for {chat_id}: {e}")
            data = None

        if data is not None:
            try:
                manifest = EmbeddingManifest.from_dict({**data, "chat_id": chat_id})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding malformed embeddings for {chat_id}: {e}")

        self._manifests[chat_id] = manifest
        return manifest

    async def _save(self, manifest: EmbeddingManifest) -> None:
        manifest.last_updated = utc_now()
        self._manifests[manifest.chat_id] = manifest
        try:
            await self._documents.put(NAMESPACE, manifest.chat_id, manifest.to_dict())
        except StorageError as e:
            logger.error(f"Failed to save embeddings for {manifest.chat_id}: {e}")

    # ===== Indexing =====

    async def index(self, chat_id: str, items: Iterable[IndexItem], source: IndexSource) -> int:
        """Embed and add items whose text isn't indexed yet.

        Returns:
            Number of entries added. 0 when embeddings are unavailable or
            the embedding call fails.
        """
        if not self._embeddings.is_ready():
            logger.warning("Embeddings not ready, skipping indexing")
            return 0

        manifest = await self._load(chat_id)
        seen = manifest.hashes()

        new_items: list[tuple[IndexItem, str]] = []
        for item in items:
            digest = self._embeddings.hash(item.text)
            if digest in seen:
                continue
            seen.add(digest)
            new_items.append((item, digest))

        if not new_items:
            return 0

        try:
            vectors = await self._embeddings.embed_batch([item.text for item, _ in new_items])
        except Exception as e:
            logger.error(f"Failed to index {source.value} memory for {chat_id}: {e}")
            return 0

        for (item, digest), vector in zip(new_items, vectors):
            manifest.entries.append(
                EmbeddingEntry(
                    id=item.id,
                    text=item.text,
                    text_hash=digest,
                    embedding=vector,
                    source=source,
                    created_at=item.created_at,
                )
            )

        await self._save(manifest)
        logger.debug(f"Indexed {len(new_items)} {source.value} entries for {chat_id}")
        return len(new_items)

    async def index_messages(self, chat_id: str, messages: Sequence[MemoryMessage]) -> int:
        """Index short-term messages."""
        items = [IndexItem(text=m.content, created_at=m.timestamp) for m in messages if m.content.strip()]
        return await self.index(chat_id, items, IndexSource.SHORT_TERM)

    async def index_entries(self, chat_id: str, entries: Sequence[LongTermEntry]) -> int:
        """Index long-term entries under their own ids."""
        items = [IndexItem(text=e.content, id=e.id, created_at=e.created_at) for e in entries]
        return await self.index(chat_id, items, IndexSource.LONG_TERM)

    # ===== Search =====

    async def search(
        self,
        chat_id: str,
        query: str,
        max_results: int = 5,
        min_score: float = 0.3,
        sources: Collection[IndexSource] = ALL_SOURCES,
    ) -> list[MemorySearchResult]:
        """Rank indexed texts against ``query``.

        Semantic candidates are over-fetched (``2 * max_results``) before
        fusion with keyword scores.
        """
        if not self._embeddings.is_ready():
            return await self._keyword_only_search(chat_id, query, max_results, sources)

        manifest = await self._load(chat_id)
        relevant = [e for e in manifest.entries if e.source in sources]
        if not relevant:
            return []

        try:
            query_vector = await self._embeddings.embed(query)
            semantic_hits = top_k(
                query_vector,
                [(entry.embedding, entry) for entry in relevant],
                k=max_results * 2,
                min_score=float("-inf"),
            )
        except Exception as e:
            logger.error(f"Search failed for {chat_id}: {e}")
            return await self._keyword_only_search(chat_id, query, max_results, sources)

        semantic = {entry.id: score for score, entry in semantic_hits}
        keyword = {
            relevant[index].id: score
            for index, score in keyword_scores(query, [e.text for e in relevant]).items()
        }
        by_id = {entry.id: entry for entry in relevant}

        fused = fuse_scores(
            semantic,
            keyword,
            min_score,
            semantic_weight=self._semantic_weight,
            keyword_weight=self._keyword_weight,
        )
        return [
            MemorySearchResult(
                id=entry_id,
                content=by_id[entry_id].text,
                score=score,
                source=by_id[entry_id].source,
                timestamp=by_id[entry_id].created_at,
            )
            for entry_id, score in fused[:max_results]
        ]

    async def _keyword_only_search(
        self,
        chat_id: str,
        query: str,
        max_results: int,
        sources: Collection[IndexSource],
    ) -> list[MemorySearchResult]:
        # Only long-term memory has a keyword matcher outside the manifest
        if self._long_term is None or IndexSource.LONG_TERM not in sources:
            return []

        entries = await self._long_term.search_by_keyword(chat_id, query)
        return [
            MemorySearchResult(
                id=entry.id,
                content=entry.content,
                score=KEYWORD_MATCH_SCORE,
                source=IndexSource.LONG_TERM,
                timestamp=entry.created_at,
                category=entry.category,
            )
            for entry in entries[:max_results]
        ]

    # ===== Maintenance =====

    async def remove_short_term(self, chat_id: str) -> int:
        """Drop short-term entries, e.g. after compaction rewrote the window."""
        manifest = await self._load(chat_id)
        before = len(manifest.entries)
        manifest.entries = [e for e in manifest.entries if e.source != IndexSource.SHORT_TERM]
        removed = before - len(manifest.entries)
        await self._save(manifest)
        logger.debug(f"Removed {removed} short-term embeddings for {chat_id}")
        return removed

    async def remove_entry(self, chat_id: str, entry_id: str) -> bool:
        """Drop one entry by id, e.g. after a long-term memory was deleted."""
        manifest = await self._load(chat_id)
        remaining = [e for e in manifest.entries if e.id != entry_id]
        if len(remaining) == len(manifest.entries):
            return False
        manifest.entries = remaining
        await self._save(manifest)
        return True

    async def clear(self, chat_id: str, source: IndexSource | None = None) -> None:
        """Clear a chat's manifest, or only the entries from one layer."""
        if source is not None:
            manifest = await self._load(chat_id)
            manifest.entries = [e for e in manifest.entries if e.source != source]
            await self._save(manifest)
            logger.info(f"Cleared {source.value} embeddings for {chat_id}")
            return

        await self._save(EmbeddingManifest(chat_id=chat_id))
        logger.info(f"Cleared embeddings for {chat_id}")

    async def stats(self, chat_id: str) -> dict[str, Any]:
        """Entry counts per layer."""
        manifest = await self._load(chat_id)
        short_term = sum(1 for e in manifest.entries if e.source == IndexSource.SHORT_TERM)
        return {
            "total": len(manifest.entries),
            "short_term_count": short_term,
            "long_term_count": len(manifest.entries) - short_term,
        }
