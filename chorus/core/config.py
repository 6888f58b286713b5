"""Application configuration using Pydantic Settings.

Environment variables are loaded with the CHORUS_ prefix, e.g.
``CHORUS_CALL_TIMEOUT_SECONDS=45`` or ``CHORUS_SUMMARY_MODEL_ID=gpt-4o``.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant taking part in a conversation that may "
    "include other AI models. Answer clearly and concisely."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Pattern: Pydantic Settings with Environment Variables
    """

    # Service configuration
    service_name: str = "chorus"
    port: int = 8090
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # Conversation defaults
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="Base system prompt prepended to every model call",
    )
    default_temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    # Streaming call budget
    call_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-call budget from call start to terminal event",
    )

    # Write throttle gates
    ui_write_interval_ms: int = Field(
        default=200,
        description="Minimum interval between lightweight (UI) writes",
    )
    persist_write_interval_ms: int = Field(
        default=500,
        description="Minimum interval between persisted writes",
    )
    ui_write_chars: int = Field(
        default=1000,
        description="Buffered characters that force a lightweight write",
    )
    persist_write_chars: int = Field(
        default=2000,
        description="Buffered characters that force a persisted write",
    )

    # Summary generation
    summary_enabled: bool = Field(default=True, description="Summarize first turns")
    summary_model_id: str | None = Field(
        default=None,
        description="Model used for titles; falls back to the first active model",
    )
    summary_max_length: int = Field(default=60, description="Basic summary length")

    # Optional YAML sources
    models_file: str | None = Field(default=None, description="Model registry YAML")
    dsl_file: str | None = Field(default=None, description="Default DSL YAML")

    model_config = SettingsConfigDict(
        env_prefix="CHORUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()
