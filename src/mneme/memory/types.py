"""Data model for the two-layer memory system.

Layer 1 is the short-term rolling message window per chat (``ChatMemory``).
Layer 2 is the long-term, vector-backed fact store (``LongTermEntry``).
``EmbeddingEntry`` rows form the hybrid index manifest that spans both layers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class MemoryRole(str, Enum):
    """Roles a short-term message can carry."""

    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"


class MemoryCategory(str, Enum):
    """Categories for long-term memory entries."""

    FACT = "fact"
    PREFERENCE = "preference"
    DECISION = "decision"
    CONTEXT = "context"
    TODO = "todo"
    FILE = "file"


# Categories the language model may assign during extraction. ``file``
# entries are only ever created explicitly.
EXTRACTABLE_CATEGORIES = frozenset(
    {
        MemoryCategory.FACT,
        MemoryCategory.PREFERENCE,
        MemoryCategory.DECISION,
        MemoryCategory.CONTEXT,
        MemoryCategory.TODO,
    }
)


class MemorySource(str, Enum):
    """How a long-term entry was created."""

    AUTO = "auto"
    MANUAL = "manual"
    COMPACTION = "compaction"


class IndexSource(str, Enum):
    """Which layer a hybrid index entry came from."""

    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"


@dataclass
class Attachment:
    """Opaque file descriptor carried on a message. Not interpreted by the memory layer."""

    id: str
    name: str
    path: str
    mime_type: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "mime_type": self.mime_type,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            path=str(data.get("path", "")),
            mime_type=str(data.get("mime_type", "application/octet-stream")),
            size=int(data.get("size", 0)),
        )


@dataclass
class MemoryMessage:
    """A single message in the short-term window.

    Attributes:
        role: user, assistant or summary
        content: The message text
        timestamp: ISO-8601 time the message was appended
        attachments: Files that arrived with the message
    """

    role: MemoryRole
    content: str
    timestamp: str = field(default_factory=utc_now)
    attachments: list[Attachment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.attachments:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create MemoryMessage from dictionary."""
        return cls(
            role=MemoryRole(data["role"]),
            content=str(data["content"]),
            timestamp=str(data.get("timestamp") or utc_now()),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
        )


@dataclass
class ChatMemory:
    """The short-term state of one chat."""

    chat_id: str
    messages: list[MemoryMessage] = field(default_factory=list)
    last_activity: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "messages": [m.to_dict() for m in self.messages],
            "last_activity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Rebuild from a stored record. Malformed messages are skipped."""
        messages: list[MemoryMessage] = []
        for raw in data.get("messages") or []:
            try:
                messages.append(MemoryMessage.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed message in chat {data.get('chat_id')}: {e}")
        return cls(
            chat_id=str(data["chat_id"]),
            messages=messages,
            last_activity=str(data.get("last_activity") or utc_now()),
        )


class FileMemoryMetadata(BaseModel):
    """Structured payload for ``file`` category entries."""

    file_id: str
    file_name: str
    file_path: str
    mime_type: str
    size: int
    tags: list[str] = []
    uploaded_at: str | None = None
    memorized_at: str | None = None


# Per-category payload schemas. Categories without a schema carry a
# free-form mapping.
METADATA_SCHEMAS: dict[MemoryCategory, type[BaseModel]] = {
    MemoryCategory.FILE: FileMemoryMetadata,
}


def encode_metadata(category: MemoryCategory, metadata: dict[str, Any] | None) -> str:
    """Serialize an entry's metadata as a tagged JSON blob.

    Vector backends only accept scalar metadata values, so the whole
    payload travels as one string keyed by its category.

    Raises:
        ValueError: If the payload does not match the category's schema.
    """
    payload = dict(metadata or {})
    schema = METADATA_SCHEMAS.get(category)
    if schema is not None and payload:
        try:
            payload = schema.model_validate(payload).model_dump()
        except ValidationError as e:
            raise ValueError(f"Invalid metadata for category {category.value!r}: {e}") from e
    return json.dumps({"kind": category.value, "data": payload})


def decode_metadata(blob: Any) -> dict[str, Any]:
    """Parse a blob written by ``encode_metadata``.

    Anything malformed degrades to an empty mapping.
    """
    if not blob:
        return {}
    if isinstance(blob, dict):
        data: Any = blob
    else:
        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable memory metadata: {e}")
            return {}

    if not isinstance(data, dict):
        logger.warning("Discarding memory metadata that is not a mapping")
        return {}

    # Older records stored the payload without the kind/data envelope
    if "kind" not in data or "data" not in data:
        return data

    payload = data["data"]
    if not isinstance(payload, dict):
        logger.warning("Discarding memory metadata with non-mapping payload")
        return {}

    try:
        category = MemoryCategory(data["kind"])
    except ValueError:
        return payload

    schema = METADATA_SCHEMAS.get(category)
    if schema is not None and payload:
        try:
            return schema.model_validate(payload).model_dump()
        except ValidationError as e:
            logger.warning(f"Discarding {category.value} metadata with unexpected shape: {e}")
            return {}
    return payload


@dataclass
class LongTermEntry:
    """A durable fact, preference, decision, context note, todo or file.

    ``id`` and ``created_at`` are assigned by the long-term store and never
    change afterwards.
    """

    id: str
    content: str
    category: MemoryCategory
    source: MemorySource
    created_at: str
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category.value,
            "source": self.source.value,
            "created_at": self.created_at,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }


@dataclass
class ExtractedMemory:
    """A fact the language model pulled out of a conversation."""

    content: str
    category: MemoryCategory
    tags: list[str] = field(default_factory=list)


@dataclass
class EmbeddingEntry:
    """One row of a chat's hybrid index manifest."""

    id: str
    text: str
    text_hash: str
    embedding: list[float]
    source: IndexSource
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "text_hash": self.text_hash,
            "embedding": list(self.embedding),
            "source": self.source.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            text_hash=str(data["text_hash"]),
            embedding=[float(x) for x in data["embedding"]],
            source=IndexSource(data["source"]),
            created_at=str(data.get("created_at") or utc_now()),
        )


@dataclass
class EmbeddingManifest:
    """All hybrid index entries for one chat."""

    chat_id: str
    entries: list[EmbeddingEntry] = field(default_factory=list)
    last_updated: str = field(default_factory=utc_now)

    def hashes(self) -> set[str]:
        return {e.text_hash for e in self.entries}

    def to_dict(self) -> dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "entries": [e.to_dict() for e in self.entries],
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Rebuild from a stored record. Malformed entries are skipped."""
        entries: list[EmbeddingEntry] = []
        for raw in data.get("entries") or []:
            try:
                entries.append(EmbeddingEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed embedding entry in chat {data.get('chat_id')}: {e}")
        return cls(
            chat_id=str(data["chat_id"]),
            entries=entries,
            last_updated=str(data.get("last_updated") or utc_now()),
        )


@dataclass
class MemorySearchResult:
    """A ranked hit from either memory layer."""

    content: str
    score: float
    source: IndexSource
    timestamp: str
    id: str | None = None
    category: MemoryCategory | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "score": self.score,
            "source": self.source.value,
            "timestamp": self.timestamp,
            "category": self.category.value if self.category else None,
        }
