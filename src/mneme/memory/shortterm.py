"""Short-term memory: the rolling message window of each chat.

Keeps the most recent messages per chat, persisted on every mutation.
When a window grows past its cap it is compacted in place before the
append returns.

This is Layer 1 of Mneme's two-layer memory system.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from mneme.brain.protocols import DocumentStoreProtocol, FactSinkProtocol
from mneme.memory.compaction import CompactionResult, Compactor
from mneme.memory.storage import StorageError
from mneme.memory.types import Attachment, ChatMemory, MemoryMessage, MemoryRole, MemorySource, utc_now

logger = logging.getLogger(__name__)

NAMESPACE = "short_term"
DEFAULT_MAX_MESSAGES = 16
SUMMARY_PREFIX = "[Previous conversation summary]: "

_PROMPT_ROLES = {
    MemoryRole.USER: "human",
    MemoryRole.ASSISTANT: "ai",
}


@dataclass
class AppendOutcome:
    """Result of ``ShortTermStore.append``.

    Attributes:
        message: The message that was appended
        compaction: Set when the append pushed the window over its cap
    """

    message: MemoryMessage
    compaction: CompactionResult | None = None

    @property
    def compacted(self) -> bool:
        return self.compaction is not None and self.compaction.compacted


class ShortTermStore:
    """Per-chat ordered message log with a hard cap.

    Chats are loaded lazily on first access and cached for the life of the
    process. Appends for the same chat are serialized, so a compaction in
    progress holds back later appends until it finishes.

    Example:
        >>> store = ShortTermStore(documents, compactor, fact_sink=long_term)
        >>> await store.append("chat-1", "user", "I live in Gothenburg")
        >>> await store.to_prompt_format("chat-1")
        [{'role': 'human', 'content': 'I live in Gothenburg'}]
    """

    def __init__(
        self,
        document_store: DocumentStoreProtocol,
        compactor: Compactor,
        fact_sink: FactSinkProtocol | None = None,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ) -> None:
        """Initialize short-term memory.

        Args:
            document_store: Durable storage for chat windows.
            compactor: Runs when a window exceeds ``max_messages``.
            fact_sink: Receives the whole window before a reset.
            max_messages: Cap on messages per chat.
        """
        if max_messages < 1:
            raise ValueError("max_messages must be positive")
        if compactor.keep_recent >= max_messages:
            raise ValueError("keep_recent must be smaller than max_messages")

        self._documents = document_store
        self._compactor = compactor
        self._fact_sink = fact_sink
        self._max_messages = max_messages
        self._chats: dict[str, ChatMemory] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def _lock(self, chat_id: str) -> asyncio.Lock:
        if chat_id not in self._locks:
            self._locks[chat_id] = asyncio.Lock()
        return self._locks[chat_id]

    async def _load(self, chat_id: str) -> ChatMemory:
        cached = self._chats.get(chat_id)
        if cached is not None:
            return cached

        chat = ChatMemory(chat_id=chat_id)
        try:
            data = await self._documents.get(NAMESPACE, chat_id)
        except StorageError as e:
            logger.error(f"Failed to load short-term memory for {chat_id}: {e}")
            data = None

        if data is not None:
            try:
                chat = ChatMemory.from_dict({**data, "chat_id": chat_id})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding malformed short-term memory for {chat_id}: {e}")

        self._chats[chat_id] = chat
        return chat

    async def _save(self, chat: ChatMemory) -> None:
        try:
            await self._documents.put(NAMESPACE, chat.chat_id, chat.to_dict())
        except StorageError as e:
            logger.error(f"Failed to save short-term memory for {chat.chat_id}: {e}")

    async def get_messages(self, chat_id: str) -> list[MemoryMessage]:
        """Messages in the window, oldest first."""
        chat = await self._load(chat_id)
        return list(chat.messages)

    async def has_memory(self, chat_id: str) -> bool:
        """Whether the chat has any messages."""
        chat = await self._load(chat_id)
        return bool(chat.messages)

    async def append(
        self,
        chat_id: str,
        role: MemoryRole | str,
        content: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> AppendOutcome:
        """Append a message, compacting first if the cap is exceeded.

        Raises:
            ValueError: If ``role`` is not user, assistant or summary
        """
        try:
            role = MemoryRole(role)
        except ValueError:
            raise ValueError(f"Invalid role: {role!r}. Must be 'user', 'assistant' or 'summary'.") from None

        message = MemoryMessage(role=role, content=content, attachments=list(attachments or []))

        async with self._lock(chat_id):
            chat = await self._load(chat_id)
            chat.messages.append(message)
            chat.last_activity = message.timestamp

            compaction = None
            if len(chat.messages) > self._max_messages:
                logger.info(
                    f"Short-term memory for {chat_id} reached {len(chat.messages)} messages, compacting"
                )
                compaction = await self._compactor.compact(chat_id, chat.messages)
                chat.messages = compaction.messages

            await self._save(chat)

        return AppendOutcome(message=message, compaction=compaction)

    async def reset(self, chat_id: str) -> int:
        """Clear a chat's window.

        Before clearing, the window is handed to the fact sink so its durable
        content is not lost. That step is best-effort.

        Returns:
            Number of messages cleared
        """
        async with self._lock(chat_id):
            chat = await self._load(chat_id)
            messages = list(chat.messages)

            if messages and self._fact_sink is not None:
                try:
                    await self._fact_sink.extract_and_save(chat_id, messages, MemorySource.COMPACTION)
                except Exception as e:
                    logger.error(f"Failed to extract facts before reset for {chat_id}: {e}")

            chat.messages = []
            chat.last_activity = utc_now()
            await self._save(chat)

        logger.info(f"Reset short-term memory for {chat_id} ({len(messages)} messages)")
        return len(messages)

    async def to_prompt_format(self, chat_id: str) -> list[dict[str, str]]:
        """Window as role/content pairs for a chat model.

        Summaries become a labelled system entry; user and assistant map to
        ``human`` and ``ai``.
        """
        formatted = []
        for message in await self.get_messages(chat_id):
            if message.role == MemoryRole.SUMMARY:
                formatted.append({"role": "system", "content": f"{SUMMARY_PREFIX}{message.content}"})
            else:
                formatted.append({"role": _PROMPT_ROLES[message.role], "content": message.content})
        return formatted
