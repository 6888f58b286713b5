"""
Chat-completion transport - OpenAI-compatible HTTP calls via httpx.

The engine consumes the transport through ``ChatTransport``:

- ``stream_chat()`` is an async context manager yielding the raw SSE byte
  stream. Leaving the context closes the HTTP response, which is how a
  timed-out or cancelled call releases its connection.
- ``complete()`` is a non-streaming call used for summaries.

Each respondent is independent: if one backend fails, only that call fails.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Protocol, runtime_checkable

import httpx

from chorus.conversation.models import ModelConfig
from chorus.core.exceptions import TransportError
from chorus.core.http import HTTPClientFactory, get_http_client_factory
from chorus.core.logging import get_logger


logger = get_logger(__name__)

ChatMessages = list[dict[str, str]]

_MAX_ERROR_BODY_CHARS = 500


@runtime_checkable
class ChatTransport(Protocol):
    """Narrow streaming-call interface to a model backend."""

    def stream_chat(
        self,
        model: ModelConfig,
        messages: ChatMessages,
        temperature: float,
    ) -> AsyncContextManager[AsyncIterator[bytes]]:
        """Open a streaming completion; yields the raw byte stream."""
        ...

    async def complete(
        self,
        model: ModelConfig,
        messages: ChatMessages,
        temperature: float,
    ) -> str:
        """Run a non-streaming completion and return the message text."""
        ...


def build_payload(
    model: ModelConfig,
    messages: ChatMessages,
    temperature: float,
    stream: bool,
) -> dict[str, Any]:
    """Request body for ``POST {base_url}/chat/completions``."""
    return {
        "model": model.model_name,
        "messages": messages,
        "temperature": temperature,
        "stream": stream,
    }


def build_headers(model: ModelConfig) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if model.api_key:
        headers["Authorization"] = f"Bearer {model.api_key}"
    return headers


class HttpxChatTransport:
    """``ChatTransport`` backed by a shared ``httpx.AsyncClient``.

    Attributes:
        client: The underlying client; closed by ``aclose()``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        factory: HTTPClientFactory | None = None,
    ) -> None:
        self._owns_client = client is None
        self.client = client or (factory or get_http_client_factory()).create_client()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @asynccontextmanager
    async def stream_chat(
        self,
        model: ModelConfig,
        messages: ChatMessages,
        temperature: float,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        url = f"{model.base_url.rstrip('/')}/chat/completions"
        payload = build_payload(model, messages, temperature, stream=True)

        logger.info(
            "Calling model",
            model_id=model.id,
            model_name=model.model_name,
            messages=len(messages),
        )
        try:
            async with self.client.stream(
                "POST", url, json=payload, headers=build_headers(model)
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"API returned status {response.status_code}: "
                        f"{body[:_MAX_ERROR_BODY_CHARS] or 'Unknown error'}",
                        status_code=response.status_code,
                        model_id=model.id,
                    )
                yield response.aiter_bytes()
        except httpx.HTTPError as e:
            raise TransportError(
                f"Connection to {model.name} failed: {e}",
                model_id=model.id,
            ) from e

    async def complete(
        self,
        model: ModelConfig,
        messages: ChatMessages,
        temperature: float,
    ) -> str:
        url = f"{model.base_url.rstrip('/')}/chat/completions"
        payload = build_payload(model, messages, temperature, stream=False)
        try:
            response = await self.client.post(url, json=payload, headers=build_headers(model))
        except httpx.HTTPError as e:
            raise TransportError(
                f"Connection to {model.name} failed: {e}",
                model_id=model.id,
            ) from e

        if response.status_code >= 400:
            raise TransportError(
                f"API returned status {response.status_code}: "
                f"{response.text[:_MAX_ERROR_BODY_CHARS] or 'Unknown error'}",
                status_code=response.status_code,
                model_id=model.id,
            )

        try:
            data = response.json()
            return str(data["choices"][0]["message"]["content"] or "")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TransportError(
                f"Malformed completion response from {model.name}",
                status_code=response.status_code,
                model_id=model.id,
            ) from e
