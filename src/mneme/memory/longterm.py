"""Long-term persistent memory backed by a vector store.

Stores facts, preferences, decisions and other durable information that
should outlive the short-term conversation window. Near-duplicates are
rejected by nearest-neighbour distance so memory doesn't bloat.

This is Layer 2 of Mneme's two-layer memory system.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from mneme.brain.protocols import LanguageModelProtocol, VectorStoreProtocol
from mneme.memory.extraction import FactExtractor
from mneme.memory.types import (
    ExtractedMemory,
    IndexSource,
    LongTermEntry,
    MemoryCategory,
    MemoryMessage,
    MemorySearchResult,
    MemorySource,
    decode_metadata,
    encode_metadata,
    utc_now,
)
from mneme.memory.vector_store import VectorDocument

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_THRESHOLD = 0.1
KEYWORD_MATCH_SCORE = 0.5


@dataclass
class SaveOutcome:
    """What happened to an entry passed to ``LongTermStore.save``."""

    entry: LongTermEntry
    stored: bool
    duplicate_of: str | None = None


def _generate_id() -> str:
    return secrets.token_hex(8)


def _entry_to_metadata(entry: LongTermEntry) -> dict[str, Any]:
    return {
        "category": entry.category.value,
        "source": entry.source.value,
        "created_at": entry.created_at,
        "tags": json.dumps(list(entry.tags)),
        "extra": encode_metadata(entry.category, entry.metadata),
    }


def _decode_tags(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(t) for t in raw]
    if isinstance(raw, str) and raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            return [t.strip() for t in raw.split(",") if t.strip()]
        if isinstance(parsed, list):
            return [str(t) for t in parsed]
    return []


def _document_to_entry(document: VectorDocument) -> LongTermEntry:
    """Rebuild an entry from its stored form, tolerating damaged metadata."""
    meta = document.metadata
    try:
        category = MemoryCategory(meta.get("category", MemoryCategory.FACT.value))
    except ValueError:
        logger.warning(f"Unknown category {meta.get('category')!r} on memory {document.id}")
        category = MemoryCategory.FACT
    try:
        source = MemorySource(meta.get("source", MemorySource.AUTO.value))
    except ValueError:
        source = MemorySource.AUTO

    return LongTermEntry(
        id=document.id,
        content=document.content,
        category=category,
        source=source,
        created_at=str(meta.get("created_at") or ""),
        tags=_decode_tags(meta.get("tags")),
        metadata=decode_metadata(meta.get("extra")),
    )


class LongTermStore:
    """Durable, deduplicated memory entries per chat.

    Every operation checks backend readiness first. When the vector store is
    unavailable, reads return empty results and writes return False/None
    (or, for ``add``, the entry that would have been stored).

    Example:
        >>> store = LongTermStore(vector_store, llm=client)
        >>> entry = await store.add("chat-1", "User lives in Gothenburg", MemoryCategory.FACT)
        >>> results = await store.search("chat-1", "gothenburg")
    """

    def __init__(
        self,
        vector_store: VectorStoreProtocol,
        llm: LanguageModelProtocol | None = None,
        duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
        extractor: FactExtractor | None = None,
    ) -> None:
        """Initialize long-term memory.

        Args:
            vector_store: Backend holding the entries.
            llm: Language model for fact extraction.
            duplicate_threshold: Cosine distance below which a new entry counts
                                 as a duplicate of its nearest neighbour.
            extractor: Override the extractor built from ``llm``.
        """
        self._vector_store = vector_store
        self._duplicate_threshold = duplicate_threshold
        self._extractor = extractor or FactExtractor(llm)

    def is_ready(self) -> bool:
        """Whether the backing vector store is available."""
        return self._vector_store.is_ready()

    # ===== Writes =====

    async def save(
        self,
        chat_id: str,
        content: str,
        category: MemoryCategory = MemoryCategory.FACT,
        source: MemorySource = MemorySource.MANUAL,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SaveOutcome:
        """Create an entry and store it unless it duplicates an existing one.

        Raises:
            ValueError: If metadata doesn't fit the category's schema
        """
        entry = LongTermEntry(
            id=_generate_id(),
            content=content,
            category=category,
            source=source,
            created_at=utc_now(),
            tags=list(tags or []),
            metadata=dict(metadata or {}),
        )
        stored_metadata = _entry_to_metadata(entry)

        if not self.is_ready():
            logger.debug(f"Vector store unavailable, not storing memory for {chat_id}")
            return SaveOutcome(entry=entry, stored=False)

        nearest = await self._vector_store.search(chat_id, content, max_results=1)
        if nearest and nearest[0].distance < self._duplicate_threshold:
            logger.debug(
                f"Skipped duplicate memory for {chat_id} "
                f"(distance {nearest[0].distance:.3f} to {nearest[0].id})"
            )
            return SaveOutcome(entry=entry, stored=False, duplicate_of=nearest[0].id)

        stored = await self._vector_store.add(
            chat_id,
            [VectorDocument(id=entry.id, content=entry.content, metadata=stored_metadata)],
        )
        if stored:
            logger.info(f"Added long-term memory for {chat_id}: {entry.content[:50]}")
        return SaveOutcome(entry=entry, stored=stored)

    async def add(
        self,
        chat_id: str,
        content: str,
        category: MemoryCategory = MemoryCategory.FACT,
        source: MemorySource = MemorySource.MANUAL,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LongTermEntry:
        """Add a memory entry.

        ``id`` and ``created_at`` are assigned here. Duplicates are silently
        not persisted; the constructed entry is returned either way.
        """
        outcome = await self.save(chat_id, content, category, source, tags, metadata)
        return outcome.entry

    async def update(
        self,
        chat_id: str,
        memory_id: str,
        content: str | None = None,
        category: MemoryCategory | None = None,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LongTermEntry | None:
        """Update an entry in place.

        Metadata is shallow-merged: new keys overwrite, others are kept.
        ``id`` and ``created_at`` never change.

        Returns:
            The updated entry, or None if it doesn't exist or the backend is down
        """
        if not self.is_ready():
            return None

        entry = await self.get(chat_id, memory_id)
        if entry is None:
            return None

        if content is not None:
            entry.content = content
        if category is not None:
            entry.category = category
        if tags is not None:
            entry.tags = list(tags)
        if metadata is not None:
            entry.metadata = {**entry.metadata, **metadata}

        ok = await self._vector_store.update(
            chat_id,
            memory_id,
            content=content,
            metadata=_entry_to_metadata(entry),
        )
        if not ok:
            return None

        logger.debug(f"Updated long-term memory {memory_id} for {chat_id}")
        return entry

    async def delete(self, chat_id: str, memory_id: str) -> bool:
        """Delete a memory entry by ID."""
        if not self.is_ready():
            return False

        deleted = await self._vector_store.delete(chat_id, memory_id)
        if deleted:
            logger.info(f"Deleted long-term memory {memory_id} for {chat_id}")
        return deleted

    async def clear_all(self, chat_id: str) -> bool:
        """Clear all long-term memories for a chat."""
        if not self.is_ready():
            return False

        cleared = await self._vector_store.clear(chat_id)
        if cleared:
            logger.info(f"Cleared long-term memory for {chat_id}")
        return cleared

    # ===== Reads =====

    async def get(self, chat_id: str, memory_id: str) -> LongTermEntry | None:
        """Fetch one entry."""
        if not self.is_ready():
            return None

        document = await self._vector_store.get(chat_id, memory_id)
        return _document_to_entry(document) if document else None

    async def list(self, chat_id: str) -> list[LongTermEntry]:
        """All long-term memories for a chat."""
        if not self.is_ready():
            return []

        return [_document_to_entry(d) for d in await self._vector_store.get_all(chat_id)]

    async def get_by_category(self, chat_id: str, category: MemoryCategory) -> list[LongTermEntry]:
        """Memories of one category."""
        return [e for e in await self.list(chat_id) if e.category == category]

    async def search(
        self,
        chat_id: str,
        query: str,
        max_results: int = 5,
        min_score: float = 0.3,
        category: MemoryCategory | None = None,
    ) -> list[MemorySearchResult]:
        """Semantic search over a chat's memories.

        Scores are ``1 - cosine distance``; hits below ``min_score`` are dropped.
        """
        if not self.is_ready() or max_results <= 0:
            return []

        where = {"category": category.value} if category else None
        hits = await self._vector_store.search(chat_id, query, max_results=max_results, where=where)

        results = []
        for hit in hits:
            score = 1.0 - hit.distance
            if score < min_score:
                continue
            entry = _document_to_entry(VectorDocument(hit.id, hit.content, hit.metadata))
            results.append(
                MemorySearchResult(
                    id=entry.id,
                    content=entry.content,
                    score=score,
                    source=IndexSource.LONG_TERM,
                    timestamp=entry.created_at,
                    category=entry.category,
                )
            )
        return results

    async def search_by_keyword(self, chat_id: str, keyword: str) -> list[LongTermEntry]:
        """Case-insensitive substring match against content and tags."""
        needle = keyword.lower()
        return [
            entry
            for entry in await self.list(chat_id)
            if needle in entry.content.lower() or any(needle in t.lower() for t in entry.tags)
        ]

    async def stats(self, chat_id: str) -> dict[str, Any]:
        """Totals per category."""
        by_category: dict[str, int] = {}
        entries = await self.list(chat_id)
        for entry in entries:
            by_category[entry.category.value] = by_category.get(entry.category.value, 0) + 1
        return {"total": len(entries), "by_category": by_category}

    async def list_chat_ids(self) -> list[str]:
        """Chats that have long-term memories."""
        if not self.is_ready():
            return []
        return await self._vector_store.list_chat_ids()

    # ===== Extraction =====

    async def extract_facts(self, chat_id: str, messages: Sequence[MemoryMessage]) -> list[ExtractedMemory]:
        """Ask the language model for explicitly stated facts in a conversation."""
        return await self._extractor.extract(chat_id, messages)

    async def extract_and_save(
        self,
        chat_id: str,
        messages: Sequence[MemoryMessage],
        source: MemorySource = MemorySource.COMPACTION,
    ) -> int:
        """Extract facts and add each one.

        Returns:
            Number of extracted items processed. Duplicates count as
            processed even though they are not stored.
        """
        extracted = await self.extract_facts(chat_id, messages)

        saved = 0
        for memory in extracted:
            outcome = await self.save(
                chat_id,
                memory.content,
                category=memory.category,
                source=source,
                tags=memory.tags,
            )
            if outcome.stored:
                saved += 1

        if extracted:
            logger.info(
                f"Extracted {len(extracted)} long-term memories for {chat_id} ({saved} newly saved)"
            )
        return len(extracted)
