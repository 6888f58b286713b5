"""Conversation title generation.

Two strategies:

- ``basic_summary``: first user message, truncated (always available)
- ``llm_summary``: asks a model for a short title through the transport

The orchestrator writes the basic summary first and only replaces it with a
non-empty model summary, so a failing summary model never leaves a chat
without a title.
"""

from __future__ import annotations

import asyncio

from chorus.conversation.models import Conversation
from chorus.conversation.registry import ModelRegistry
from chorus.core.exceptions import StreamTimeoutError
from chorus.core.logging import get_logger
from chorus.streaming.transport import ChatMessages, ChatTransport


logger = get_logger(__name__)

DEFAULT_SUMMARY = "New conversation"

_SUMMARY_SYSTEM_PROMPT = (
    "You write short titles for conversations. Reply with a single title of "
    "at most eight words. Do not use quotes or trailing punctuation."
)
_REGENERATION_HINT = "Suggest a different title than before."
_SUMMARY_TEMPERATURE = 0.3
_TRANSCRIPT_MESSAGES = 6
_TRANSCRIPT_CHARS = 500
_MAX_TITLE_CHARS = 100


class SummaryGenerator:
    """Produces conversation titles.

    Attributes:
        max_length: Truncation length for the basic summary.
    """

    def __init__(
        self,
        transport: ChatTransport | None = None,
        registry: ModelRegistry | None = None,
        max_length: int = 60,
        timeout: float = 30.0,
    ) -> None:
        self._transport = transport
        self._registry = registry or ModelRegistry()
        self.max_length = max_length
        self._timeout = timeout

    def basic_summary(self, chat: Conversation) -> str:
        """First user message, cut at ``max_length`` with ``...``."""
        first_user = next((m for m in chat.sorted_messages() if m.is_user), None)
        if first_user is None:
            return DEFAULT_SUMMARY

        summary = first_user.content
        if len(summary) > self.max_length:
            summary = summary[: self.max_length] + "..."
        return summary

    def build_prompt(self, chat: Conversation, is_regeneration: bool = False) -> ChatMessages:
        lines = []
        for message in chat.sorted_messages()[:_TRANSCRIPT_MESSAGES]:
            if not message.content.strip():
                continue
            speaker = "User" if message.is_user else self._registry.display_name(message.model_id or "")
            lines.append(f"{speaker}: {message.content[:_TRANSCRIPT_CHARS]}")

        request = "Title this conversation:\n\n" + "\n\n".join(lines)
        if is_regeneration:
            request += f"\n\n{_REGENERATION_HINT}"
        return [
            {"role": "system", "content": _SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": request},
        ]

    async def llm_summary(
        self,
        chat: Conversation,
        model_id: str,
        is_regeneration: bool = False,
    ) -> str:
        """Ask ``model_id`` for a title.

        Returns the cleaned title, possibly empty. Raises on transport,
        configuration or timeout failure; callers treat this as best-effort.
        """
        if self._transport is None:
            return self.basic_summary(chat)

        model = self._registry.resolve(model_id)
        try:
            async with asyncio.timeout(self._timeout):
                raw = await self._transport.complete(
                    model,
                    self.build_prompt(chat, is_regeneration),
                    _SUMMARY_TEMPERATURE,
                )
        except TimeoutError as e:
            raise StreamTimeoutError(
                f"Summary request to {model.name} timed out after {self._timeout:g} seconds",
                timeout_seconds=self._timeout,
                model_id=model_id,
            ) from e

        title = clean_title(raw)
        logger.debug("Generated model summary", chat_id=chat.id, model_id=model_id, title=title)
        return title


def clean_title(raw: str) -> str:
    """First non-empty line, without wrapping quotes, capped in length."""
    line = next((part.strip() for part in raw.splitlines() if part.strip()), "")
    line = line.strip().strip("\"'`").strip()
    if line.lower().startswith("title:"):
        line = line[len("title:"):].strip()
    return line[:_MAX_TITLE_CHARS]
