"""Vector database connection and management, based on ChromaDB.

Each chat gets its own collection (``chat_<chatId>_memories``) using cosine
distance. Embeddings are computed through the shared ``EmbeddingCache`` and
handed to Chroma explicitly, so no text is embedded twice.

If Chroma is unreachable, every operation degrades to an empty/False/None
result and long-term memory is effectively disabled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import chromadb
from chromadb.config import Settings

from mneme.memory.embedding import EmbeddingCache

logger = logging.getLogger(__name__)

COLLECTION_PREFIX = "chat_"
COLLECTION_SUFFIX = "_memories"

MetadataValue = str | int | float | bool


@dataclass
class VectorDocument:
    """A stored document with its (already sanitized) metadata."""

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorSearchHit:
    """A nearest-neighbour result. Lower distance means more similar."""

    id: str
    content: str
    metadata: dict[str, Any]
    distance: float


def collection_name(chat_id: str) -> str:
    """Chroma collection name for a chat."""
    safe_id = re.sub(r"[^a-zA-Z0-9._-]", "_", chat_id)
    return f"{COLLECTION_PREFIX}{safe_id}{COLLECTION_SUFFIX}"


def parse_chroma_url(url: str) -> tuple[str, int, bool]:
    """Split a Chroma URL into (host, port, ssl)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "localhost", 8100, False

    if not parsed.hostname:
        return "localhost", 8100, False

    ssl = parsed.scheme == "https"
    port = parsed.port or (443 if ssl else 8000)
    return parsed.hostname, port, ssl


def sanitize_metadata(metadata: dict[str, Any]) -> dict[str, MetadataValue | list[MetadataValue]]:
    """Coerce metadata into types Chroma accepts.

    Scalars and non-empty lists of scalars pass through, None is dropped,
    anything else is JSON-encoded.
    """
    out: dict[str, MetadataValue | list[MetadataValue]] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            out[key] = value
        elif (
            isinstance(value, (list, tuple))
            and value
            and all(isinstance(v, (str, int, float, bool)) for v in value)
        ):
            out[key] = list(value)
        else:
            out[key] = json.dumps(value)
    return out


class ChromaVectorStore:
    """
    Long-term memory storage backed by a Chroma server.

    Example:
        >>> store = ChromaVectorStore("http://localhost:8100", embeddings=cache)
        >>> await store.connect()
        >>> await store.add("chat-1", [VectorDocument("m1", "User lives in Gothenburg")])
        >>> hits = await store.search("chat-1", "where does the user live?")
    """

    def __init__(
        self,
        host: str,
        embeddings: EmbeddingCache,
        enabled: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            host: Chroma server URL.
            embeddings: Shared embedding cache used for documents and queries.
            enabled: When False the store never connects.
        """
        self._host = host
        self._embeddings = embeddings
        self._enabled = enabled
        self._client: Any = None
        self._collections: dict[str, Any] = {}
        self._connected = False

    async def connect(self) -> bool:
        """Connect to Chroma and verify with a heartbeat.

        Returns:
            True if connected.
        """
        if self._connected:
            return True

        if not self._enabled:
            logger.info("Vector store disabled by configuration")
            return False

        host, port, ssl = parse_chroma_url(self._host)
        try:
            client = chromadb.HttpClient(
                host=host,
                port=port,
                ssl=ssl,
                settings=Settings(anonymized_telemetry=False),
            )
            heartbeat = await asyncio.to_thread(client.heartbeat)
        except Exception as e:
            logger.error(f"Failed to connect to ChromaDB at {self._host}: {e}")
            logger.warning("Long-term memory features will be disabled")
            self._client = None
            self._connected = False
            return False

        self._client = client
        self._connected = True
        logger.info(f"Connected to ChromaDB at {self._host} (heartbeat: {heartbeat})")
        return True

    def is_ready(self) -> bool:
        """Check if ChromaDB is available."""
        return self._connected and self._client is not None

    async def _collection(self, chat_id: str) -> Any:
        """Get or create the collection for a chat, or None if unavailable."""
        if not self.is_ready():
            return None

        name = collection_name(chat_id)
        if name in self._collections:
            return self._collections[name]

        try:
            collection = await asyncio.to_thread(
                self._client.get_or_create_collection,
                name=name,
                metadata={"hnsw:space": "cosine", "chat_id": chat_id},
                embedding_function=None,
            )
        except Exception as e:
            logger.error(f"Failed to get/create collection for chat {chat_id}: {e}")
            return None

        self._collections[name] = collection
        return collection

    async def add(self, chat_id: str, documents: Sequence[VectorDocument]) -> bool:
        """Add documents to a chat's collection."""
        if not documents:
            return True

        collection = await self._collection(chat_id)
        if collection is None:
            return False

        if not self._embeddings.is_ready():
            logger.warning("Cannot add documents without embeddings")
            return False

        try:
            vectors = await self._embeddings.embed_batch([d.content for d in documents])
            await asyncio.to_thread(
                collection.add,
                ids=[d.id for d in documents],
                documents=[d.content for d in documents],
                metadatas=[sanitize_metadata(d.metadata) for d in documents],
                embeddings=vectors,
            )
        except Exception as e:
            logger.error(f"Failed to add documents for chat {chat_id}: {e}")
            return False

        return True

    async def search(
        self,
        chat_id: str,
        query: str,
        max_results: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[VectorSearchHit]:
        """Search for the documents closest to ``query``."""
        collection = await self._collection(chat_id)
        if collection is None or not self._embeddings.is_ready():
            return []

        try:
            query_vector = await self._embeddings.embed(query)
            results = await asyncio.to_thread(
                collection.query,
                query_embeddings=[query_vector],
                n_results=max_results,
                where=where or None,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Search failed for chat {chat_id}: {e}")
            return []

        ids = (results.get("ids") or [[]])[0]
        if not ids:
            return []

        documents = (results.get("documents") or [[]])[0] or []
        metadatas = (results.get("metadatas") or [[]])[0] or []
        distances = (results.get("distances") or [[]])[0] or []

        hits = []
        for index, doc_id in enumerate(ids):
            hits.append(
                VectorSearchHit(
                    id=doc_id,
                    content=documents[index] if index < len(documents) and documents[index] else "",
                    metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
                    distance=float(distances[index]) if index < len(distances) else 1.0,
                )
            )
        return hits

    async def get(self, chat_id: str, document_id: str) -> VectorDocument | None:
        """Get document by ID."""
        collection = await self._collection(chat_id)
        if collection is None:
            return None

        try:
            results = await asyncio.to_thread(
                collection.get,
                ids=[document_id],
                include=["documents", "metadatas"],
            )
        except Exception as e:
            logger.error(f"Failed to get document {document_id}: {e}")
            return None

        documents = self._to_documents(results)
        return documents[0] if documents else None

    async def get_all(self, chat_id: str) -> list[VectorDocument]:
        """Get all documents in a chat's collection."""
        collection = await self._collection(chat_id)
        if collection is None:
            return []

        try:
            results = await asyncio.to_thread(collection.get, include=["documents", "metadatas"])
        except Exception as e:
            logger.error(f"Failed to get all documents for chat {chat_id}: {e}")
            return []

        return self._to_documents(results)

    @staticmethod
    def _to_documents(results: Any) -> list[VectorDocument]:
        ids = results.get("ids") or []
        documents = results.get("documents") or []
        metadatas = results.get("metadatas") or []
        return [
            VectorDocument(
                id=doc_id,
                content=documents[index] if index < len(documents) and documents[index] else "",
                metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
            )
            for index, doc_id in enumerate(ids)
        ]

    async def update(
        self,
        chat_id: str,
        document_id: str,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Update a document's content and/or metadata."""
        collection = await self._collection(chat_id)
        if collection is None:
            return False

        kwargs: dict[str, Any] = {"ids": [document_id]}
        try:
            if content is not None:
                if not self._embeddings.is_ready():
                    logger.warning("Cannot re-embed updated content without embeddings")
                    return False
                kwargs["documents"] = [content]
                kwargs["embeddings"] = [await self._embeddings.embed(content)]
            if metadata is not None:
                kwargs["metadatas"] = [sanitize_metadata(metadata)]
            await asyncio.to_thread(collection.update, **kwargs)
        except Exception as e:
            logger.error(f"Failed to update document {document_id}: {e}")
            return False

        return True

    async def delete(self, chat_id: str, document_id: str) -> bool:
        """Delete a document by ID."""
        collection = await self._collection(chat_id)
        if collection is None:
            return False

        try:
            await asyncio.to_thread(collection.delete, ids=[document_id])
        except Exception as e:
            logger.error(f"Failed to delete document {document_id}: {e}")
            return False

        return True

    async def clear(self, chat_id: str) -> bool:
        """Delete all documents in a chat's collection."""
        if not self.is_ready():
            return False

        name = collection_name(chat_id)
        try:
            await asyncio.to_thread(self._client.delete_collection, name=name)
        except Exception as e:
            logger.error(f"Failed to clear collection for chat {chat_id}: {e}")
            return False

        self._collections.pop(name, None)
        logger.info(f"Cleared collection for chat {chat_id}")
        return True

    async def count(self, chat_id: str) -> int | None:
        """Number of documents in a chat's collection."""
        collection = await self._collection(chat_id)
        if collection is None:
            return None

        try:
            return int(await asyncio.to_thread(collection.count))
        except Exception as e:
            logger.error(f"Failed to get stats for chat {chat_id}: {e}")
            return None

    async def list_chat_ids(self) -> list[str]:
        """Chat IDs that have a memory collection."""
        if not self.is_ready():
            return []

        try:
            collections = await asyncio.to_thread(self._client.list_collections)
        except Exception as e:
            logger.error(f"Failed to list collections: {e}")
            return []

        chat_ids = []
        for collection in collections:
            # Some client versions return names, others Collection objects
            name = getattr(collection, "name", collection)
            if name.startswith(COLLECTION_PREFIX) and name.endswith(COLLECTION_SUFFIX):
                chat_ids.append(name[len(COLLECTION_PREFIX) : -len(COLLECTION_SUFFIX)])
        return sorted(chat_ids)

    async def close(self) -> None:
        """Forget cached collections and the client."""
        self._collections.clear()
        self._client = None
        self._connected = False
