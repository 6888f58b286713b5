"""HTTP client factory for model backend communication.

Every respondent is an OpenAI-compatible endpoint with its own base URL,
so clients are created without a base URL and requests carry absolute URLs.
All clients use httpx for async HTTP operations.

Pattern: Factory Pattern
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx

from chorus.core.config import Settings, get_settings
from chorus.core.logging import get_logger


logger = get_logger(__name__)

# Connect budget is kept short; the read budget is governed by the
# per-call timeout in the response controller.
_CONNECT_TIMEOUT_SECONDS = 10.0


class HTTPClientFactory:
    """Factory for creating HTTP clients to model backends.

    Example:
        ```python
        factory = HTTPClientFactory()
        async with factory.get_client() as client:
            async with client.stream("POST", url, json=payload) as response:
                ...
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the HTTP client factory.

        Args:
            settings: Application settings. Uses get_settings() if not provided.
        """
        self._settings = settings or get_settings()

    def build_timeout(self, timeout: float | None = None) -> httpx.Timeout:
        """Build the httpx timeout for a streaming call."""
        request_timeout = timeout or self._settings.call_timeout_seconds
        return httpx.Timeout(
            request_timeout,
            connect=min(_CONNECT_TIMEOUT_SECONDS, request_timeout),
        )

    @asynccontextmanager
    async def get_client(
        self,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> AsyncGenerator[httpx.AsyncClient, None]:
        """Get a short-lived HTTP client.

        Args:
            timeout: Request timeout in seconds. Uses settings default if not specified.
            **kwargs: Additional arguments passed to httpx.AsyncClient.

        Yields:
            Configured httpx.AsyncClient instance.
        """
        request_timeout = self.build_timeout(timeout)
        logger.debug("Creating HTTP client", timeout=request_timeout.read)

        async with httpx.AsyncClient(timeout=request_timeout, **kwargs) as client:
            yield client

    def create_client(
        self,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.AsyncClient:
        """Create a standalone HTTP client (caller manages lifecycle).

        Warning:
            Caller is responsible for calling `await client.aclose()`.
        """
        return httpx.AsyncClient(timeout=self.build_timeout(timeout), **kwargs)


_factory: HTTPClientFactory | None = None


def get_http_client_factory() -> HTTPClientFactory:
    """Get the shared HTTP client factory instance."""
    global _factory
    if _factory is None:
        _factory = HTTPClientFactory()
    return _factory
