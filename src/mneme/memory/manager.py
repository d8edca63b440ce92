"""Unified memory manager for Mneme's two-layer memory system.

Provides a single interface to the short-term window, long-term memory and
the hybrid index, and keeps the index consistent with both layers.

This is the main entry point for all memory operations in Mneme.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from typing import Any

from mneme.brain.embeddings import OpenAIEmbeddingProvider
from mneme.brain.llm_clients import OpenAIChatClient
from mneme.brain.protocols import (
    DocumentStoreProtocol,
    EmbeddingProviderProtocol,
    LanguageModelProtocol,
    VectorStoreProtocol,
)
from mneme.config import MnemeConfig
from mneme.memory.compaction import Compactor
from mneme.memory.embedding import EmbeddingCache
from mneme.memory.longterm import LongTermStore, SaveOutcome
from mneme.memory.semantic import ALL_SOURCES, HybridIndex
from mneme.memory.shortterm import AppendOutcome, ShortTermStore
from mneme.memory.storage import SQLiteDocumentStore
from mneme.memory.summarizer import ConversationSummarizer
from mneme.memory.types import (
    Attachment,
    FileMemoryMetadata,
    IndexSource,
    LongTermEntry,
    MemoryCategory,
    MemoryMessage,
    MemoryRole,
    MemorySearchResult,
    MemorySource,
    utc_now,
)
from mneme.memory.vector_store import ChromaVectorStore

logger = logging.getLogger(__name__)


class MemoryManager:
    """Unified interface to Mneme's two-layer memory system.

    Collaborators are built from configuration unless passed in:

    - llm: summaries and fact extraction (None disables both)
    - embedding_provider: wrapped in the shared ``EmbeddingCache``
    - vector_store: Chroma by default
    - document_store: SQLite at ``memory.store_path`` by default

    Example:
        >>> from mneme.config import MnemeConfig
        >>> config = MnemeConfig.load()
        >>> memory = MemoryManager(config)
        >>> await memory.initialize()
        >>> await memory.add_message("chat-1", "user", "I live in Gothenburg")
        >>> context = await memory.build_context_for_llm("chat-1", "where do I live?")
    """

    def __init__(
        self,
        config: MnemeConfig,
        llm: LanguageModelProtocol | None = None,
        embedding_provider: EmbeddingProviderProtocol | None = None,
        vector_store: VectorStoreProtocol | None = None,
        document_store: DocumentStoreProtocol | None = None,
        embeddings: EmbeddingCache | None = None,
    ) -> None:
        """Wire up every memory component.

        Args:
            config: Mneme configuration
            llm: Language model override
            embedding_provider: Embedding provider override
            vector_store: Vector store override
            document_store: Document store override
            embeddings: Embedding cache override, shared with a custom vector store
        """
        self._config = config
        memory_config = config.memory

        if llm is None and config.llm.api_key:
            llm = OpenAIChatClient(
                model=config.llm.model,
                api_key=config.llm.api_key,
                base_url=config.llm.base_url,
                temperature=config.llm.temperature,
                max_tokens=config.llm.max_tokens,
                timeout=config.llm.timeout,
            )
        if llm is None:
            logger.warning("No language model configured - summaries and fact extraction disabled")
        self._llm = llm

        if embeddings is None and embedding_provider is None:
            embedding_provider = OpenAIEmbeddingProvider(
                model=config.embedding.model,
                api_key=config.embedding.api_key,
                base_url=config.embedding.base_url,
                timeout=config.embedding.timeout,
            )
        self._embedding_provider = embedding_provider
        if embeddings is None:
            embeddings = EmbeddingCache(
                embedding_provider,
                max_entries=memory_config.embedding_cache_max_entries,
            )
        self._embeddings = embeddings

        if vector_store is None:
            vector_store = ChromaVectorStore(
                host=config.vector_store.host,
                embeddings=self._embeddings,
                enabled=config.vector_store.enabled,
            )
        if document_store is None:
            document_store = SQLiteDocumentStore(memory_config.store_path)
        self._vector_store = vector_store
        self._documents = document_store

        self._long_term = LongTermStore(
            self._vector_store,
            llm=llm,
            duplicate_threshold=memory_config.duplicate_threshold,
        )
        self._short_term = ShortTermStore(
            self._documents,
            Compactor(
                fact_sink=self._long_term,
                summarizer=ConversationSummarizer(llm) if llm is not None else None,
                keep_recent=memory_config.short_term_keep_recent,
            ),
            fact_sink=self._long_term,
            max_messages=memory_config.short_term_max_messages,
        )
        self._index = HybridIndex(
            self._documents,
            self._embeddings,
            long_term=self._long_term,
            semantic_weight=memory_config.semantic_weight,
            keyword_weight=memory_config.keyword_weight,
        )

        self._initialized = False

    async def initialize(self) -> None:
        """Open storage and connect to the vector store.

        The vector store being unreachable is not an error: long-term
        features just stay disabled.
        """
        if self._initialized:
            return

        logger.info("Initializing MemoryManager...")

        initialize = getattr(self._documents, "initialize", None)
        if initialize is not None:
            await initialize()

        connect = getattr(self._vector_store, "connect", None)
        if connect is not None:
            await connect()

        self._initialized = True
        logger.info(
            f"MemoryManager initialization complete "
            f"(long-term: {'ready' if self._long_term.is_ready() else 'disabled'}, "
            f"embeddings: {'ready' if self._embeddings.is_ready() else 'disabled'})"
        )

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("MemoryManager not initialized. Call initialize() first.")

    # ===== Short-term =====

    async def add_message(
        self,
        chat_id: str,
        role: MemoryRole | str,
        content: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> AppendOutcome:
        """Record a conversation turn and index the window.

        Raises:
            RuntimeError: If MemoryManager not initialized
            ValueError: If role is invalid
        """
        self._require_initialized()

        outcome = await self._short_term.append(chat_id, role, content, attachments)

        if outcome.compacted:
            # The evicted messages no longer exist verbatim; facts pulled out
            # of them now live in long-term memory.
            await self._index.remove_short_term(chat_id)
            await self._sync_long_term(chat_id)

        await self._index.index_messages(chat_id, await self._short_term.get_messages(chat_id))
        return outcome

    async def get_messages(self, chat_id: str) -> list[MemoryMessage]:
        """Short-term window of a chat."""
        self._require_initialized()
        return await self._short_term.get_messages(chat_id)

    async def has_memory(self, chat_id: str) -> bool:
        self._require_initialized()
        return await self._short_term.has_memory(chat_id)

    async def get_formatted_messages(self, chat_id: str) -> list[dict[str, str]]:
        """Short-term window as role/content pairs for a chat model."""
        self._require_initialized()
        return await self._short_term.to_prompt_format(chat_id)

    async def reset(self, chat_id: str) -> int:
        """Clear the short-term window after saving its durable facts.

        Returns:
            Number of messages cleared
        """
        self._require_initialized()

        cleared = await self._short_term.reset(chat_id)
        await self._index.remove_short_term(chat_id)
        await self._sync_long_term(chat_id)
        return cleared

    # ===== Long-term =====

    async def save_memory(
        self,
        chat_id: str,
        content: str,
        category: MemoryCategory = MemoryCategory.FACT,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SaveOutcome:
        """Store a fact in long-term memory and report whether it was persisted.

        Raises:
            RuntimeError: If MemoryManager not initialized
            ValueError: If metadata doesn't fit the category
        """
        self._require_initialized()

        outcome = await self._long_term.save(
            chat_id,
            content,
            category=category,
            source=MemorySource.MANUAL,
            tags=tags,
            metadata=metadata,
        )
        if outcome.stored:
            await self._index.index_entries(chat_id, [outcome.entry])
        return outcome

    async def remember(
        self,
        chat_id: str,
        content: str,
        category: MemoryCategory = MemoryCategory.FACT,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LongTermEntry:
        """Store a fact in long-term memory.

        Returns the entry even when it was a duplicate or the vector store
        is unavailable. Use ``save_memory`` to tell those cases apart.
        """
        outcome = await self.save_memory(chat_id, content, category=category, tags=tags, metadata=metadata)
        return outcome.entry

    async def update_memory(
        self,
        chat_id: str,
        memory_id: str,
        content: str | None = None,
        category: MemoryCategory | None = None,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LongTermEntry | None:
        """Update a long-term entry. None if it doesn't exist or the store is down."""
        self._require_initialized()

        entry = await self._long_term.update(
            chat_id, memory_id, content=content, category=category, tags=tags, metadata=metadata
        )
        if entry is not None and content is not None:
            await self._index.remove_entry(chat_id, memory_id)
            await self._index.index_entries(chat_id, [entry])
        return entry

    async def forget(self, chat_id: str, memory_id: str) -> bool:
        """Delete a long-term entry."""
        self._require_initialized()

        deleted = await self._long_term.delete(chat_id, memory_id)
        if deleted:
            await self._index.remove_entry(chat_id, memory_id)
        return deleted

    async def list_memories(self, chat_id: str, category: MemoryCategory | None = None) -> list[LongTermEntry]:
        """Long-term entries of a chat, optionally of one category."""
        self._require_initialized()

        if category is not None:
            return await self._long_term.get_by_category(chat_id, category)
        return await self._long_term.list(chat_id)

    async def clear_long_term(self, chat_id: str) -> bool:
        """Drop every long-term entry of a chat."""
        self._require_initialized()

        cleared = await self._long_term.clear_all(chat_id)
        if cleared:
            await self._index.clear(chat_id, source=IndexSource.LONG_TERM)
        return cleared

    async def list_chat_ids(self) -> list[str]:
        """Chats that have long-term memories."""
        self._require_initialized()
        return await self._long_term.list_chat_ids()

    async def memorize_file(
        self,
        chat_id: str,
        attachment: Attachment,
        description: str,
        tags: Sequence[str] | None = None,
        uploaded_at: str | None = None,
    ) -> LongTermEntry:
        """Remember a file by its description so it can be found later."""
        self._require_initialized()

        tags = list(tags or [])
        metadata = FileMemoryMetadata(
            file_id=attachment.id,
            file_name=attachment.name,
            file_path=attachment.path,
            mime_type=attachment.mime_type,
            size=attachment.size,
            tags=tags,
            uploaded_at=uploaded_at,
            memorized_at=utc_now(),
        )
        entry = await self.remember(
            chat_id,
            description,
            category=MemoryCategory.FILE,
            tags=tags,
            metadata=metadata.model_dump(),
        )
        logger.info(f"Memorized file {attachment.name} for {chat_id}")
        return entry

    async def search_files(self, chat_id: str, query: str) -> list[LongTermEntry]:
        """Memorized files whose description, tags or name contain ``query``."""
        self._require_initialized()

        needle = query.lower()
        return [
            entry
            for entry in await self._long_term.get_by_category(chat_id, MemoryCategory.FILE)
            if needle in entry.content.lower()
            or any(needle in tag.lower() for tag in entry.tags)
            or needle in str(entry.metadata.get("file_name", "")).lower()
        ]

    # ===== Retrieval =====

    async def search(
        self,
        chat_id: str,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
        sources: Collection[IndexSource] = ALL_SOURCES,
    ) -> list[MemorySearchResult]:
        """Hybrid search across both memory layers."""
        self._require_initialized()

        return await self._index.search(
            chat_id,
            query,
            max_results=self._config.memory.default_max_results if max_results is None else max_results,
            min_score=self._config.memory.default_min_score if min_score is None else min_score,
            sources=sources,
        )

    async def search_long_term(
        self,
        chat_id: str,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
        category: MemoryCategory | None = None,
    ) -> list[MemorySearchResult]:
        """Vector search over long-term memory only."""
        self._require_initialized()

        return await self._long_term.search(
            chat_id,
            query,
            max_results=self._config.memory.default_max_results if max_results is None else max_results,
            min_score=self._config.memory.default_min_score if min_score is None else min_score,
            category=category,
        )

    async def build_context_for_llm(self, chat_id: str, query: str) -> dict[str, Any]:
        """Build complete memory context for an LLM prompt.

        Returns:
            Dict with:
                - chat_id: The chat
                - messages: Short-term window in prompt format
                - relevant_memories: Hybrid search hits for ``query``
        """
        self._require_initialized()

        messages = await self._short_term.to_prompt_format(chat_id)
        relevant = await self.search(chat_id, query)

        return {
            "chat_id": chat_id,
            "messages": messages,
            "relevant_memories": [r.to_dict() for r in relevant],
        }

    async def stats(self, chat_id: str) -> dict[str, Any]:
        """Counts for every layer of a chat."""
        self._require_initialized()

        return {
            "short_term_messages": len(await self._short_term.get_messages(chat_id)),
            "long_term": await self._long_term.stats(chat_id),
            "index": await self._index.stats(chat_id),
            "embedding_cache": self._embeddings.get_stats(),
        }

    async def _sync_long_term(self, chat_id: str) -> None:
        # Indexing is idempotent, so re-offering every entry only adds new ones
        entries = await self._long_term.list(chat_id)
        if entries:
            await self._index.index_entries(chat_id, entries)

    # ===== Lifecycle =====

    async def close(self) -> None:
        """Release storage and network resources."""
        for resource in (self._documents, self._vector_store, self._llm, self._embedding_provider):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        self._initialized = False
        logger.info("MemoryManager closed")

    async def __aenter__(self) -> MemoryManager:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ===== Properties =====

    @property
    def embeddings(self) -> EmbeddingCache:
        return self._embeddings

    @property
    def long_term(self) -> LongTermStore:
        return self._long_term

    @property
    def short_term(self) -> ShortTermStore:
        return self._short_term

    @property
    def index(self) -> HybridIndex:
        return self._index

    @property
    def is_initialized(self) -> bool:
        """Check if MemoryManager is initialized."""
        return self._initialized
