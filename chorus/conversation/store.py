"""ConversationStore - persistence boundary for chats and messages.

The engine only talks to storage through the ``ConversationStore`` protocol.
``InMemoryConversationStore`` is the default implementation:

- CRUD for conversations, with copies handed out so callers never share
  mutable state with the store
- Per-message writes (``update_message``) so a response controller can only
  touch its own message
- Lightweight (UI) vs persisted write accounting per message
- Change listeners for UI-style observers
- Thread-safe operations using threading.Lock
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections import Counter
from typing import Callable, Protocol, runtime_checkable

from chorus.conversation.models import Conversation, Message, MessageState, now_ms
from chorus.core.logging import get_logger


logger = get_logger(__name__)

# (chat_id, message_id or None, persisted)
ChangeListener = Callable[[str, str | None, bool], None]


@runtime_checkable
class ConversationStore(Protocol):
    """Storage operations the engine depends on."""

    def get_chat(self, chat_id: str) -> Conversation | None:
        """Return a snapshot of the conversation, or None."""
        ...

    def update_chat(self, chat: Conversation) -> bool:
        """Replace the stored conversation with ``chat``."""
        ...

    def add_message(self, chat_id: str, message: Message) -> Conversation | None:
        """Append a message; returns the updated snapshot or None."""
        ...

    def update_summary(self, chat_id: str, summary: str) -> bool:
        """Set the conversation summary."""
        ...

    def update_message(
        self,
        chat_id: str,
        message_id: str,
        content: str,
        state: MessageState | None = None,
        persist: bool = True,
    ) -> bool:
        """Write one message's content (and optionally state)."""
        ...


class InMemoryConversationStore:
    """In-memory conversation storage with thread-safe operations.

    Attributes:
        persisted_writes: Count of persisted message writes by message id.
        ui_writes: Count of lightweight message writes by message id.
    """

    def __init__(self) -> None:
        """Initialize empty store with thread lock."""
        self._chats: dict[str, Conversation] = {}
        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []
        self.persisted_writes: Counter[str] = Counter()
        self.ui_writes: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Conversation CRUD
    # ------------------------------------------------------------------

    def create_chat(self, chat_id: str | None = None) -> Conversation:
        """Create an empty conversation.

        Raises:
            ValueError: If ``chat_id`` is already in use.
        """
        with self._lock:
            chat_id = chat_id or f"chat_{uuid.uuid4().hex[:12]}"
            if chat_id in self._chats:
                raise ValueError(f"Chat {chat_id} already exists")
            chat = Conversation(id=chat_id)
            self._chats[chat_id] = chat
            snapshot = copy.deepcopy(chat)
        self._notify(chat_id, None, True)
        return snapshot

    def get_chat(self, chat_id: str) -> Conversation | None:
        with self._lock:
            chat = self._chats.get(chat_id)
            return copy.deepcopy(chat) if chat is not None else None

    def list_chats(self) -> list[Conversation]:
        """All conversations, most recently updated first."""
        with self._lock:
            chats = [copy.deepcopy(c) for c in self._chats.values()]
        return sorted(chats, key=lambda c: c.last_updated, reverse=True)

    def delete_chat(self, chat_id: str) -> bool:
        with self._lock:
            removed = self._chats.pop(chat_id, None) is not None
        if removed:
            self._notify(chat_id, None, True)
        return removed

    def update_chat(self, chat: Conversation) -> bool:
        ids = [m.id for m in chat.messages]
        if len(ids) != len(set(ids)):
            logger.error("Rejected chat update with duplicate message ids", chat_id=chat.id)
            return False
        with self._lock:
            stored = copy.deepcopy(chat)
            stored.last_updated = now_ms()
            self._chats[chat.id] = stored
        self._notify(chat.id, None, True)
        return True

    def add_message(self, chat_id: str, message: Message) -> Conversation | None:
        """Append a message.

        Raises:
            ValueError: If the conversation already holds a message with this id.
        """
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return None
            if chat.get_message(message.id) is not None:
                raise ValueError(f"Message {message.id} already exists in chat {chat_id}")
            chat.messages.append(copy.deepcopy(message))
            chat.last_updated = now_ms()
            snapshot = copy.deepcopy(chat)
        self._notify(chat_id, message.id, True)
        return snapshot

    def update_summary(self, chat_id: str, summary: str) -> bool:
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return False
            chat.summary = summary
            chat.last_updated = now_ms()
        self._notify(chat_id, None, True)
        return True

    def set_starred(self, chat_id: str, starred: bool) -> bool:
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return False
            chat.is_starred = starred
        self._notify(chat_id, None, True)
        return True

    # ------------------------------------------------------------------
    # Per-message writes
    # ------------------------------------------------------------------

    def update_message(
        self,
        chat_id: str,
        message_id: str,
        content: str,
        state: MessageState | None = None,
        persist: bool = True,
    ) -> bool:
        """Write one message's content.

        Frozen (terminal) messages are never rewritten.

        Returns:
            False when the chat or message is missing or the message is frozen.
        """
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return False
            message = chat.get_message(message_id)
            if message is None:
                return False
            if message.is_frozen:
                logger.warning(
                    "Ignored write to frozen message",
                    chat_id=chat_id,
                    message_id=message_id,
                )
                return False
            message.content = content
            if state is not None:
                message.state = state
            chat.last_updated = now_ms()
            if persist:
                self.persisted_writes[message_id] += 1
            else:
                self.ui_writes[message_id] += 1
        self._notify(chat_id, message_id, persist)
        return True

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, chat_id: str, message_id: str | None, persisted: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(chat_id, message_id, persisted)
            except Exception:
                logger.exception("Store listener failed", chat_id=chat_id)
