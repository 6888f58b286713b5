"""Unit tests for chorus.conversation.registry."""

from pathlib import Path

import pytest

from chorus.conversation.models import ModelConfig
from chorus.conversation.registry import ModelRegistry
from chorus.core.exceptions import ConfigurationError


_MODELS_YAML = """
models:
  - id: gpt
    name: GPT-4o
    base_url: https://api.example.com/v1/
    model_name: gpt-4o
    api_key: ${TEST_CHORUS_KEY}
  - id: local
    base_url: http://localhost:11434/v1
    model_name: llama3.1
    is_active: false
"""


class TestResolve:

    def test_unknown_model_raises(self, registry: ModelRegistry) -> None:
        with pytest.raises(ConfigurationError, match="Model with ID ghost not found"):
            registry.resolve("ghost")

    def test_display_name_fallback(self, registry: ModelRegistry) -> None:
        assert registry.display_name("gpt") == "GPT"
        assert registry.display_name("ghost") == "Model ghost"

    def test_active_models(self, registry: ModelRegistry) -> None:
        registry.register(
            ModelConfig(id="off", name="Off", base_url="u", model_name="m", is_active=False)
        )

        assert "off" not in [m.id for m in registry.active_models()]
        assert "off" in registry


class TestFromYaml:

    def test_loads_and_expands_key(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_CHORUS_KEY", "sk-test")
        path = tmp_path / "models.yaml"
        path.write_text(_MODELS_YAML)

        registry = ModelRegistry.from_yaml(path)

        gpt = registry.resolve("gpt")
        assert gpt.api_key == "sk-test"
        assert gpt.base_url == "https://api.example.com/v1"
        assert registry.resolve("local").name == "local"
        assert [m.id for m in registry.active_models()] == ["gpt"]

    def test_missing_fields_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "models.yaml"
        path.write_text("models:\n  - id: broken\n")

        with pytest.raises(ConfigurationError, match="missing base_url, model_name"):
            ModelRegistry.from_yaml(path)
