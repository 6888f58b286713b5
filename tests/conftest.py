"""Test configuration and shared fixtures.

Pattern: Pytest fixtures, conftest.py
"""

from __future__ import annotations

import pytest

from chorus.conversation.models import ModelConfig
from chorus.conversation.registry import ModelRegistry
from chorus.conversation.store import InMemoryConversationStore
from chorus.core.config import Settings
from tests.fakes.fake_transport import FakeChatTransport


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Settings with summaries off and a short call budget."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        system_prompt="You are a test assistant.",
        call_timeout_seconds=2.0,
        summary_enabled=False,
    )


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def models() -> list[ModelConfig]:
    return [
        ModelConfig(id="gpt", name="GPT", base_url="http://gpt.test/v1", model_name="gpt-4o", api_key="k1"),
        ModelConfig(id="claude", name="Claude", base_url="http://claude.test/v1", model_name="claude-3", api_key="k2"),
        ModelConfig(id="llama", name="Llama", base_url="http://llama.test/v1", model_name="llama-3"),
    ]


@pytest.fixture
def registry(models: list[ModelConfig]) -> ModelRegistry:
    return ModelRegistry(models)


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def transport() -> FakeChatTransport:
    return FakeChatTransport()
