"""Mneme Memory System - two-layer conversational memory.

This package provides Mneme's memory system consisting of two layers plus
an index that spans them:

1. **ShortTermStore (Layer 1):** Rolling per-chat message window with LLM-assisted compaction
2. **LongTermStore (Layer 2):** Deduplicated facts, preferences and decisions in a vector store
3. **HybridIndex:** Semantic + keyword search across both layers

Classes:
    MemoryManager: Unified interface to both layers
    ShortTermStore: Capped message window (Layer 1)
    LongTermStore: Durable fact store (Layer 2)
    HybridIndex: Fused semantic/keyword retrieval
    EmbeddingCache: Content-hash memoized embeddings

Example:
    >>> from mneme.config import MnemeConfig
    >>> from mneme.memory import MemoryManager
    >>>
    >>> config = MnemeConfig.load()
    >>> memory = MemoryManager(config)
    >>> await memory.initialize()
    >>>
    >>> await memory.add_message("chat-1", "user", "I live in Gothenburg")
    >>> await memory.remember("chat-1", "User prefers dark roast coffee", MemoryCategory.PREFERENCE)
    >>> results = await memory.search("chat-1", "coffee")
"""

from __future__ import annotations

from mneme.memory.compaction import CompactionResult, Compactor
from mneme.memory.embedding import EmbeddingCache, EmbeddingUnavailableError
from mneme.memory.longterm import LongTermStore, SaveOutcome
from mneme.memory.manager import MemoryManager
from mneme.memory.semantic import HybridIndex, IndexItem
from mneme.memory.shortterm import AppendOutcome, ShortTermStore
from mneme.memory.storage import SQLiteDocumentStore, StorageError
from mneme.memory.types import (
    Attachment,
    IndexSource,
    LongTermEntry,
    MemoryCategory,
    MemoryMessage,
    MemoryRole,
    MemorySearchResult,
    MemorySource,
)

__all__ = [
    "MemoryManager",
    "ShortTermStore",
    "AppendOutcome",
    "Compactor",
    "CompactionResult",
    "LongTermStore",
    "SaveOutcome",
    "HybridIndex",
    "IndexItem",
    "EmbeddingCache",
    "EmbeddingUnavailableError",
    "SQLiteDocumentStore",
    "StorageError",
    "Attachment",
    "IndexSource",
    "LongTermEntry",
    "MemoryCategory",
    "MemoryMessage",
    "MemoryRole",
    "MemorySearchResult",
    "MemorySource",
]
