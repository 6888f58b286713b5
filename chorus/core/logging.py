"""Structured logging for the engine.

Production and staging emit one JSON object per event; other environments
use structlog's console renderer. Every event carries the service name and
environment, plus any context bound for the running turn (see
``turn_log_context``). Context is held in contextvars, so respondent tasks
created inside a turn inherit its ``chat_id`` and ``mode``.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, Processor

from chorus.core.config import Settings, get_settings


_JSON_ENVIRONMENTS = frozenset({"production", "staging"})
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Stamp service name and environment on the event."""
    settings = get_settings()
    event_dict.setdefault("service", settings.service_name)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def _base_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderers(settings: Settings) -> list[Processor]:
    if settings.environment in _JSON_ENVIRONMENTS:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger from settings."""
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=[*_base_processors(), *_renderers(settings)],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # The orchestrator and API modules log through stdlib logging.
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Structured logger for a module.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Response completed", message_id="msg_2_gpt", chars=120)
    """
    return structlog.get_logger(name)


def turn_log_context(chat_id: str, mode: str, **extra: Any) -> AbstractContextManager[Any]:
    """Bind turn identifiers to every structlog event emitted inside the block."""
    return structlog.contextvars.bound_contextvars(chat_id=chat_id, mode=mode, **extra)
