"""
Conversation Models - Data structures for multi-model chats

This module defines the core data structures shared by the orchestrator,
the mode policies, the DSL engine and the response controllers.

Ordering contract: ``Message.timestamp`` is assigned once at creation and is
the only ordering key. Consumers sort by ``(timestamp, insertion index)``,
never by arrival order of concurrent responses.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Sender(str, Enum):
    """Who authored a message."""

    USER = "user"
    ASSISTANT = "assistant"


class MessageState(str, Enum):
    """Lifecycle of a message's content."""

    PENDING = "pending"        # Placeholder, no network activity yet
    STREAMING = "streaming"    # Owning controller is accumulating content
    COMPLETED = "completed"    # Stream ended cleanly
    ERRORED = "errored"        # Transport/config failure, marker appended
    TIMED_OUT = "timed_out"    # Call budget exceeded, marker appended

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {MessageState.COMPLETED, MessageState.ERRORED, MessageState.TIMED_OUT}
)


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Message:
    """Single message in a conversation.

    Attributes:
        id: Unique message identifier within the conversation.
        sender: USER or ASSISTANT.
        content: Message text; grows while streaming, frozen once terminal.
        timestamp: Creation time in milliseconds; never reassigned.
        model_id: Authoring model (required for assistant messages).
        state: Lifecycle state of the content.
    """

    id: str
    sender: Sender
    content: str
    timestamp: int
    model_id: str | None = None
    state: MessageState = MessageState.COMPLETED

    def __post_init__(self) -> None:
        if self.sender == Sender.ASSISTANT and not self.model_id:
            raise ValueError(f"Assistant message {self.id} requires a model_id")

    @property
    def is_user(self) -> bool:
        return self.sender == Sender.USER

    @property
    def is_assistant(self) -> bool:
        return self.sender == Sender.ASSISTANT

    @property
    def is_frozen(self) -> bool:
        return self.state.is_terminal and self.is_assistant

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "sender": self.sender.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "model_id": self.model_id,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Build a message from its serialized form."""
        return cls(
            id=data["id"],
            sender=Sender(data["sender"]),
            content=data.get("content", ""),
            timestamp=int(data["timestamp"]),
            model_id=data.get("model_id"),
            state=MessageState(data.get("state", MessageState.COMPLETED.value)),
        )


@dataclass
class Conversation:
    """A chat and its message log.

    Attributes:
        id: Unique conversation identifier.
        messages: Messages in insertion order; use sorted_messages() for
            display or context building.
        summary: Short title for the conversation.
        is_starred: User flag.
        last_updated: Milliseconds of the last write.
        date: ISO date the conversation was created.
    """

    id: str
    messages: list[Message] = field(default_factory=list)
    summary: str = ""
    is_starred: bool = False
    last_updated: int = field(default_factory=now_ms)
    date: str = field(
        default_factory=lambda: datetime.now(timezone.utc).date().isoformat()
    )

    def sorted_messages(self) -> list[Message]:
        """Messages ordered by timestamp, ties broken by insertion index."""
        indexed = list(enumerate(self.messages))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]))
        return [message for _, message in indexed]

    def get_message(self, message_id: str) -> Message | None:
        """Get a message by ID."""
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def last_timestamp(self) -> int:
        """Largest timestamp in the conversation, or 0 when empty."""
        return max((m.timestamp for m in self.messages), default=0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "summary": self.summary,
            "is_starred": self.is_starred,
            "last_updated": self.last_updated,
            "date": self.date,
            "messages": [m.to_dict() for m in self.sorted_messages()],
        }


@dataclass(frozen=True)
class ModelConfig:
    """A respondent backend as resolved by the model registry.

    Immutable for the duration of a turn.

    Attributes:
        id: Registry identifier used in turn requests.
        name: Display name used for attribution tags.
        base_url: OpenAI-compatible API root (``.../v1``).
        model_name: Model name sent in the request body.
        api_key: Bearer token for the backend.
        is_active: Whether the model is enabled for selection.
    """

    id: str
    name: str
    base_url: str
    model_name: str
    api_key: str = field(default="", repr=False)
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Public view; never includes the API key."""
        return {
            "id": self.id,
            "name": self.name,
            "base_url": self.base_url,
            "model_name": self.model_name,
            "is_active": self.is_active,
        }
