"""Conservative extraction of long-term facts from conversation."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from mneme.brain.protocols import LanguageModelProtocol
from mneme.memory.types import (
    EXTRACTABLE_CATEGORIES,
    ExtractedMemory,
    MemoryCategory,
    MemoryMessage,
    MemoryRole,
)

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """You are analyzing a conversation to extract important long-term memories worth preserving.

CRITICAL: Be VERY conservative. Most conversations contain NOTHING worth remembering long-term.

Extract ONLY genuinely important information that the user EXPLICITLY states about themselves:
- Personal facts the user directly shares (name, location, profession, birthday)
- Explicit preferences the user states ("I prefer...", "I like...", "I always want...")
- Decisions the user explicitly makes ("I decided to...", "Let's go with...")
- Ongoing projects or goals the user describes in detail

DO NOT extract:
- Interests inferred from queries (asking the BTC price is not "interested in crypto")
- One-time lookups or informational requests (weather, prices, news, time)
- Transactional requests that don't reveal lasting preferences
- Scheduled tasks, reminders or runtime state
- Casual conversation or greetings
- Anything you have to INFER rather than the user EXPLICITLY stating
- Role-play instructions or temporary personas the assistant is asked to adopt

KEY DISTINCTION:
- "What's the BTC price?" -> DO NOT save (a query, not a stated interest)
- "I'm a crypto trader and need to track BTC daily" -> SAVE (explicit statement about themselves)
- "I live in Gothenburg" -> SAVE (explicit personal fact)

Categorize each memory as one of:
- "fact" - factual information the user explicitly stated about themselves
- "preference" - a preference the user explicitly expressed
- "decision" - a decision the user explicitly made
- "context" - ongoing context explicitly described by the user
- "todo" - something the user explicitly said they still need to do

Respond with a JSON array of objects. If nothing is worth extracting (MOST CASES), return [].

Example response:
[
  {"content": "User's name is John", "category": "fact", "tags": ["identity"]},
  {"content": "User prefers TypeScript over JavaScript", "category": "preference", "tags": ["programming"]}
]"""

EXTRACTION_USER_PROMPT = """Analyze this conversation and extract ONLY explicitly stated long-term memories:

{conversation}

Return a JSON array of extracted memories (or [] if nothing was explicitly stated - the expected outcome for most conversations):"""

_ROLE_LABELS = {
    MemoryRole.USER: "User",
    MemoryRole.ASSISTANT: "Assistant",
    MemoryRole.SUMMARY: "Context",
}

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


def format_conversation(messages: Sequence[MemoryMessage], labels: dict[MemoryRole, str]) -> str:
    """Render messages as ``Label: content`` paragraphs."""
    return "\n\n".join(f"{labels[m.role]}: {m.content}" for m in messages)


def parse_extracted(content: str) -> list[ExtractedMemory]:
    """Parse the model's reply into validated memories.

    The first ``[...]`` span is decoded as JSON. A missing or malformed array
    yields nothing; items with an unknown category or blank content are
    dropped.
    """
    match = _JSON_ARRAY.search(content)
    if not match:
        return []

    try:
        raw = json.loads(match.group(0))
    except ValueError as e:
        logger.warning(f"Extraction reply was not valid JSON: {e}")
        return []

    if not isinstance(raw, list):
        return []

    return [memory for memory in (_validate_item(item) for item in raw) if memory is not None]


def _validate_item(item: Any) -> ExtractedMemory | None:
    if not isinstance(item, dict):
        return None

    content = item.get("content")
    if not isinstance(content, str) or not content.strip():
        return None

    try:
        category = MemoryCategory(item.get("category"))
    except ValueError:
        return None
    if category not in EXTRACTABLE_CATEGORIES:
        return None

    tags = item.get("tags") or []
    if not isinstance(tags, list):
        tags = []

    return ExtractedMemory(
        content=content.strip(),
        category=category,
        tags=[t for t in tags if isinstance(t, str) and t.strip()],
    )


class FactExtractor:
    """Pulls explicitly stated facts, preferences and decisions out of a conversation."""

    def __init__(self, llm: LanguageModelProtocol | None) -> None:
        """Initialize the extractor.

        Args:
            llm: Language model. None disables extraction.
        """
        self._llm = llm

    async def extract(self, chat_id: str, messages: Sequence[MemoryMessage]) -> list[ExtractedMemory]:
        """Extract memories. Any failure yields an empty list."""
        if not messages or self._llm is None:
            return []

        conversation = format_conversation(messages, _ROLE_LABELS)

        try:
            response = await self._llm.invoke(
                [
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": EXTRACTION_USER_PROMPT.format(conversation=conversation)},
                ]
            )
        except Exception as e:
            logger.error(f"Failed to extract important facts for {chat_id}: {e}")
            return []

        extracted = parse_extracted(response.content)
        logger.debug(f"Extracted {len(extracted)} candidate memories for {chat_id}")
        return extracted
