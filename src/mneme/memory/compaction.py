"""Compaction of an over-full short-term window.

When a chat exceeds its cap, the oldest messages are handed to the fact
sink for long-term extraction, then summarized into a single synthetic
``summary`` message. The most recent ``keep_recent`` messages always
survive verbatim.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from mneme.brain.protocols import FactSinkProtocol, SummarizerProtocol
from mneme.memory.types import MemoryMessage, MemoryRole, MemorySource

logger = logging.getLogger(__name__)

DEFAULT_KEEP_RECENT = 8


@dataclass
class CompactionResult:
    """Outcome of one compaction run.

    Attributes:
        messages: The replacement message list
        summarized: Number of messages removed from the window
        summary: The synthesized summary text, or "" if none was kept
        extracted: Facts the sink processed, or None if extraction failed
    """

    messages: list[MemoryMessage] = field(default_factory=list)
    summarized: int = 0
    summary: str = ""
    extracted: int | None = None

    @property
    def compacted(self) -> bool:
        return self.summarized > 0


class Compactor:
    """Replaces the aged prefix of a window with a summary."""

    def __init__(
        self,
        fact_sink: FactSinkProtocol | None,
        summarizer: SummarizerProtocol | None,
        keep_recent: int = DEFAULT_KEEP_RECENT,
    ) -> None:
        """Initialize the compactor.

        Args:
            fact_sink: Receives evicted messages for long-term extraction.
            summarizer: Condenses evicted messages. None trims without a summary.
            keep_recent: Messages always kept verbatim at the tail.
        """
        if keep_recent < 1:
            raise ValueError("keep_recent must be at least 1")
        self._fact_sink = fact_sink
        self._summarizer = summarizer
        self.keep_recent = keep_recent

    async def compact(self, chat_id: str, messages: Sequence[MemoryMessage]) -> CompactionResult:
        """Compact ``messages``.

        Never raises for capability failures: a failed summary falls back
        to keeping only the recent tail.
        """
        split = max(len(messages) - self.keep_recent, 0)
        to_summarize = list(messages[:split])
        recent = list(messages[split:])

        if not to_summarize:
            return CompactionResult(messages=recent)

        extracted = await self._extract(chat_id, to_summarize)

        try:
            summary = await self._summarize(chat_id, to_summarize)
        except Exception as e:
            logger.error(f"Failed to summarize conversation for {chat_id}: {e}")
            logger.warning(f"Dropping {len(to_summarize)} old messages for {chat_id} without a summary")
            return CompactionResult(messages=recent, summarized=len(to_summarize), extracted=extracted)

        if summary:
            compacted = [MemoryMessage(role=MemoryRole.SUMMARY, content=summary), *recent]
        else:
            compacted = recent

        logger.info(
            f"Compacted {len(to_summarize)} messages for {chat_id} "
            f"({'with' if summary else 'without'} summary, {len(compacted)} remain)"
        )
        return CompactionResult(
            messages=compacted,
            summarized=len(to_summarize),
            summary=summary,
            extracted=extracted,
        )

    async def _extract(self, chat_id: str, messages: list[MemoryMessage]) -> int | None:
        # Best-effort: extraction never blocks compaction
        if self._fact_sink is None:
            return None
        try:
            return await self._fact_sink.extract_and_save(chat_id, messages, MemorySource.COMPACTION)
        except Exception as e:
            logger.error(f"Failed to extract facts before compaction for {chat_id}: {e}")
            return None

    async def _summarize(self, chat_id: str, messages: list[MemoryMessage]) -> str:
        if self._summarizer is None:
            return ""
        summary = await self._summarizer.summarize(chat_id, messages)
        return (summary or "").strip()
