"""ModelRegistry - resolves model ids to backend configurations.

Models can be registered programmatically or loaded from YAML:

```yaml
models:
  - id: gpt
    name: GPT-4o
    base_url: https://api.openai.com/v1
    model_name: gpt-4o
    api_key: ${OPENAI_API_KEY}
  - id: local
    name: Llama
    base_url: http://localhost:11434/v1
    model_name: llama3.1
    is_active: false
```

``${VAR}`` references in ``api_key`` are expanded from the environment so
keys never need to live in the file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable

import yaml

from chorus.conversation.models import ModelConfig
from chorus.core.exceptions import ConfigurationError
from chorus.core.logging import get_logger


logger = get_logger(__name__)

_REQUIRED_FIELDS = ("id", "base_url", "model_name")


class ModelRegistry:
    """Registry of respondent backends keyed by model id."""

    def __init__(self, models: Iterable[ModelConfig] = ()) -> None:
        self._models: dict[str, ModelConfig] = {}
        for model in models:
            self.register(model)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)

    def register(self, model: ModelConfig) -> None:
        """Add or replace a model definition."""
        self._models[model.id] = model

    def unregister(self, model_id: str) -> bool:
        return self._models.pop(model_id, None) is not None

    def resolve(self, model_id: str) -> ModelConfig:
        """Resolve a model id.

        Raises:
            ConfigurationError: If the model id is unknown.
        """
        model = self._models.get(model_id)
        if model is None:
            raise ConfigurationError(f"Model with ID {model_id} not found", model_id=model_id)
        return model

    def get(self, model_id: str) -> ModelConfig | None:
        return self._models.get(model_id)

    def display_name(self, model_id: str) -> str:
        """Attribution name for a model; unknown ids render as ``Model <id>``."""
        model = self._models.get(model_id)
        return model.name if model else f"Model {model_id}"

    def all_models(self) -> list[ModelConfig]:
        return list(self._models.values())

    def active_models(self) -> list[ModelConfig]:
        return [m for m in self._models.values() if m.is_active]

    # ------------------------------------------------------------------
    # YAML loading
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: str | Path) -> ModelRegistry:
        """Load a registry from a YAML file with a top-level ``models`` list."""
        text = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(text) or {}
        entries = data.get("models", []) if isinstance(data, dict) else []
        registry = cls(_model_from_entry(entry, index) for index, entry in enumerate(entries))
        logger.info("Loaded model registry", path=str(path), models=len(registry))
        return registry


def _model_from_entry(entry: Any, index: int) -> ModelConfig:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Model entry {index} must be a mapping")
    missing = [name for name in _REQUIRED_FIELDS if not entry.get(name)]
    if missing:
        raise ConfigurationError(
            f"Model entry {index} is missing {', '.join(missing)}",
            model_id=entry.get("id"),
        )
    return ModelConfig(
        id=str(entry["id"]),
        name=str(entry.get("name") or entry["id"]),
        base_url=str(entry["base_url"]).rstrip("/"),
        model_name=str(entry["model_name"]),
        api_key=os.path.expandvars(str(entry.get("api_key", ""))),
        is_active=bool(entry.get("is_active", True)),
    )
