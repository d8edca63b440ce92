"""Summaries of the evicted part of a conversation."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mneme.brain.protocols import LanguageModelProtocol
from mneme.memory.extraction import format_conversation
from mneme.memory.types import MemoryMessage, MemoryRole

logger = logging.getLogger(__name__)

NOTHING_IMPORTANT = "NOTHING_IMPORTANT"

SUMMARY_SYSTEM_PROMPT = f"""You are summarizing a conversation to preserve important context for future interactions.

Rules:
- Extract ONLY important information worth remembering (facts, preferences, decisions, action items)
- If there's nothing significant, return "{NOTHING_IMPORTANT}"
- Keep the summary concise (2-3 sentences max)
- Focus on: user preferences, important facts mentioned, decisions made, pending tasks
- Do NOT summarize casual chat or greetings
- Write in third person (e.g., "The user mentioned..." or "User asked about...")"""

SUMMARY_USER_PROMPT = """Summarize this conversation, keeping only important details worth remembering for future context:

{conversation}

If there's nothing important, respond with just: """ + NOTHING_IMPORTANT

_ROLE_LABELS = {
    MemoryRole.USER: "User",
    MemoryRole.ASSISTANT: "Assistant",
    MemoryRole.SUMMARY: "Summary",
}


class ConversationSummarizer:
    """Condenses a run of messages into a few sentences.

    Errors from the language model propagate; the compactor decides what
    to do without a summary.
    """

    def __init__(self, llm: LanguageModelProtocol) -> None:
        self._llm = llm

    async def summarize(self, chat_id: str, messages: Sequence[MemoryMessage]) -> str:
        """Summarize messages. Returns "" when nothing is worth keeping."""
        if not messages:
            return ""

        response = await self._llm.invoke(
            [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": SUMMARY_USER_PROMPT.format(
                        conversation=format_conversation(messages, _ROLE_LABELS)
                    ),
                },
            ]
        )

        content = response.content.strip()
        if content == NOTHING_IMPORTANT or "nothing important" in content.lower():
            logger.debug(f"Nothing important to summarize for {chat_id}")
            return ""
        return content
