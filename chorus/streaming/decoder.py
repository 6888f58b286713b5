"""SSE decoder for OpenAI-compatible chat-completion streams.

The byte stream is a sequence of ``data: <json>`` lines terminated by
``data: [DONE]``. Network chunks do not respect line boundaries, so the
decoder buffers a trailing partial line (and any split UTF-8 sequence) until
the next chunk arrives.

Malformed JSON on a line is skipped, never fatal. An ``error`` object in the
payload is a server-side failure and raises ``TransportError``.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, AsyncIterator

from chorus.core.exceptions import TransportError
from chorus.core.logging import get_logger


logger = get_logger(__name__)

_DATA_PREFIX = "data:"
_DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Incremental decoder from raw bytes to content deltas.

    Example:
        >>> decoder = SSEDecoder()
        >>> decoder.feed(b'data: {"choices": [{"delta": {"content": "Hi"}}]}\\n')
        ['Hi']
        >>> decoder.feed(b"data: [DONE]\\n")
        []
        >>> decoder.done
        True
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped_lines = 0

    def feed(self, chunk: bytes) -> list[str]:
        """Decode one network chunk into zero or more content deltas."""
        if self.done:
            return []
        self._buffer += self._utf8.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[str]:
        """Decode whatever is left once the byte stream is exhausted."""
        if self.done:
            return []
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([tail])

    def _decode_lines(self, lines: list[str]) -> list[str]:
        deltas: list[str] = []
        for raw in lines:
            if self.done:
                break
            delta = self._decode_line(raw.strip())
            if delta:
                deltas.append(delta)
        return deltas

    def _decode_line(self, line: str) -> str | None:
        if not line.startswith(_DATA_PREFIX):
            return None
        payload = line[len(_DATA_PREFIX):].strip()
        if not payload:
            return None
        if payload == _DONE_SENTINEL:
            self.done = True
            return None
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            self.skipped_lines += 1
            logger.debug("Skipped malformed SSE line", length=len(payload))
            return None
        return extract_delta(parsed)


def extract_delta(parsed: Any) -> str | None:
    """Pull ``choices[0].delta.content`` out of a parsed chunk.

    Raises:
        TransportError: If the chunk carries an ``error`` object.
    """
    if not isinstance(parsed, dict):
        return None
    error = parsed.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise TransportError(f"Stream reported an error: {message or 'Unknown error'}")
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0] if isinstance(choices[0], dict) else {}
    delta = first.get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None


async def iter_deltas(
    byte_stream: AsyncIterator[bytes],
    decoder: SSEDecoder | None = None,
) -> AsyncIterator[str]:
    """Yield content deltas from an async byte stream until ``[DONE]``."""
    decoder = decoder or SSEDecoder()
    async for chunk in byte_stream:
        for delta in decoder.feed(chunk):
            yield delta
        if decoder.done:
            return
    for delta in decoder.flush():
        yield delta
