"""Isolated mode: every model answers privately."""

from __future__ import annotations

from typing import Sequence

from chorus.conversation.models import Message
from chorus.modes.base import ModePolicy, ModeType, sort_messages


class IsolatedPolicy(ModePolicy):
    """Each model sees the user messages and only its own replies."""

    mode = ModeType.ISOLATED
    description = "Each model responds independently, seeing only its own history"

    def filter_messages(
        self,
        all_messages: Sequence[Message],
        responding_model_id: str,
        exclude_message_id: str | None = None,
    ) -> list[Message]:
        return [
            message
            for message in sort_messages(all_messages, exclude_message_id)
            if message.is_user or message.model_id == responding_model_id
        ]
