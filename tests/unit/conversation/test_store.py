"""Unit tests for chorus.conversation.store."""

import pytest

from chorus.conversation.models import Message, MessageState, Sender
from chorus.conversation.store import ConversationStore, InMemoryConversationStore


_CHAT_ID = "chat_1"


def _assistant(message_id: str = "m1", state: MessageState = MessageState.PENDING) -> Message:
    return Message(
        id=message_id, sender=Sender.ASSISTANT, content="", timestamp=1,
        model_id="gpt", state=state,
    )


@pytest.fixture
def store() -> InMemoryConversationStore:
    store = InMemoryConversationStore()
    store.create_chat(_CHAT_ID)
    return store


class TestChatLifecycle:

    def test_satisfies_protocol(self, store: InMemoryConversationStore) -> None:
        assert isinstance(store, ConversationStore)

    def test_create_generates_id(self) -> None:
        chat = InMemoryConversationStore().create_chat()

        assert chat.id.startswith("chat_")

    def test_duplicate_chat_rejected(self, store: InMemoryConversationStore) -> None:
        with pytest.raises(ValueError):
            store.create_chat(_CHAT_ID)

    def test_delete(self, store: InMemoryConversationStore) -> None:
        assert store.delete_chat(_CHAT_ID)
        assert store.get_chat(_CHAT_ID) is None
        assert not store.delete_chat(_CHAT_ID)

    def test_get_returns_copy(self, store: InMemoryConversationStore) -> None:
        store.get_chat(_CHAT_ID).summary = "mutated"

        assert store.get_chat(_CHAT_ID).summary == ""


class TestMessages:

    def test_duplicate_message_id_rejected(self, store: InMemoryConversationStore) -> None:
        store.add_message(_CHAT_ID, _assistant())

        with pytest.raises(ValueError):
            store.add_message(_CHAT_ID, _assistant())

    def test_add_to_missing_chat(self, store: InMemoryConversationStore) -> None:
        assert store.add_message("nope", _assistant()) is None

    def test_update_message_counts_write_kinds(self, store: InMemoryConversationStore) -> None:
        store.add_message(_CHAT_ID, _assistant())

        store.update_message(_CHAT_ID, "m1", "a", state=MessageState.STREAMING, persist=False)
        store.update_message(_CHAT_ID, "m1", "ab", persist=True)

        assert store.ui_writes["m1"] == 1
        assert store.persisted_writes["m1"] == 1
        assert store.get_chat(_CHAT_ID).get_message("m1").content == "ab"

    def test_frozen_message_not_rewritten(self, store: InMemoryConversationStore) -> None:
        store.add_message(_CHAT_ID, _assistant(state=MessageState.STREAMING))
        store.update_message(_CHAT_ID, "m1", "done", state=MessageState.COMPLETED)

        written = store.update_message(_CHAT_ID, "m1", "late")

        assert not written
        assert store.get_chat(_CHAT_ID).get_message("m1").content == "done"

    def test_update_missing_message(self, store: InMemoryConversationStore) -> None:
        assert not store.update_message(_CHAT_ID, "ghost", "x")

    def test_update_chat_rejects_duplicate_ids(self, store: InMemoryConversationStore) -> None:
        chat = store.get_chat(_CHAT_ID)
        chat.messages = [_assistant(), _assistant()]

        assert not store.update_chat(chat)


class TestListeners:

    def test_listener_sees_write_kind(self, store: InMemoryConversationStore) -> None:
        seen = []
        store.add_listener(lambda chat_id, message_id, persisted: seen.append((message_id, persisted)))
        store.add_message(_CHAT_ID, _assistant())

        store.update_message(_CHAT_ID, "m1", "a", persist=False)

        assert seen == [("m1", True), ("m1", False)]

    def test_failing_listener_does_not_break_writes(self, store: InMemoryConversationStore) -> None:
        def boom(*_: object) -> None:
            raise RuntimeError("listener failed")

        store.add_listener(boom)

        assert store.update_summary(_CHAT_ID, "title")
        assert store.get_chat(_CHAT_ID).summary == "title"
