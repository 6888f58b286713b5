"""Core module - Configuration, logging, HTTP clients, and shared exceptions.

Exports:
    - Settings, get_settings: Pydantic Settings configuration
    - configure_logging, get_logger: Structured logging (structlog)
    - HTTPClientFactory, get_http_client_factory: HTTP clients
    - Exception classes: ChorusError, ConfigurationError, etc.
"""

from chorus.core.config import Settings, get_settings
from chorus.core.exceptions import (
    ChatNotFoundError,
    ChorusError,
    ConfigurationError,
    DSLValidationError,
    InvalidStateTransitionError,
    StreamTimeoutError,
    TransportError,
)
from chorus.core.http import HTTPClientFactory, get_http_client_factory
from chorus.core.logging import configure_logging, get_logger


__all__ = [
    # Exceptions
    "ChatNotFoundError",
    "ChorusError",
    "ConfigurationError",
    "DSLValidationError",
    # HTTP Clients
    "HTTPClientFactory",
    "InvalidStateTransitionError",
    # Configuration
    "Settings",
    "StreamTimeoutError",
    "TransportError",
    # Logging
    "configure_logging",
    "get_http_client_factory",
    "get_logger",
    "get_settings",
]
