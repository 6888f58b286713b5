"""Discuss mode: shared history with speaker attribution."""

from __future__ import annotations

from typing import Sequence

from chorus.conversation.models import Message
from chorus.modes.base import ModePolicy, ModeType, sort_messages


class DiscussPolicy(ModePolicy):
    """Every model sees every message; assistant messages are tagged ``[Name]: ``.

    Attribution is idempotent: content that already starts with ``[Name``
    is passed through unchanged.
    """

    mode = ModeType.DISCUSS
    description = "Models see and can respond to each other's messages"

    def filter_messages(
        self,
        all_messages: Sequence[Message],
        responding_model_id: str,
        exclude_message_id: str | None = None,
    ) -> list[Message]:
        return [
            self.attribute(message)
            for message in sort_messages(all_messages, exclude_message_id)
        ]
