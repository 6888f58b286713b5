"""
Conversation Module - conversation data, storage and model registry

The orchestrator lives in ``chorus.conversation.orchestrator`` and is not
re-exported here, since it depends on the mode and DSL packages which
themselves import these data types.
"""

from chorus.conversation.models import (
    Conversation,
    Message,
    MessageState,
    ModelConfig,
    Sender,
    now_ms,
)
from chorus.conversation.registry import ModelRegistry
from chorus.conversation.store import ConversationStore, InMemoryConversationStore

__all__ = [
    "Conversation",
    "ConversationStore",
    "InMemoryConversationStore",
    "Message",
    "MessageState",
    "ModelConfig",
    "ModelRegistry",
    "Sender",
    "now_ms",
]
