"""StreamingSet - the turn's wait group of in-flight message ids.

This is the only cross-task coordination point of a turn. Phase barriers,
sub-round barriers and the summary trigger all wait on it becoming empty.

Membership changes are plain set operations executed on the event loop
thread, so they are atomic with respect to other tasks. ``wait_empty`` parks
on an ``asyncio.Event`` rather than polling.
"""

from __future__ import annotations

import asyncio
from typing import Iterator


class StreamingSet:
    """Set of message ids whose network calls are in flight.

    Example:
        >>> streaming = StreamingSet()
        >>> streaming.add("msg_1")
        >>> await streaming.wait_empty()  # blocks until discard("msg_1")
    """

    def __init__(self) -> None:
        self._ids: set[str] = set()
        self._empty = asyncio.Event()
        self._empty.set()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._ids))

    @property
    def is_empty(self) -> bool:
        return not self._ids

    def snapshot(self) -> list[str]:
        return sorted(self._ids)

    def add(self, message_id: str) -> None:
        """Mark a message as in flight.

        Raises:
            ValueError: If the id is already in flight.
        """
        if message_id in self._ids:
            raise ValueError(f"Message {message_id} is already streaming")
        self._ids.add(message_id)
        self._empty.clear()

    def discard(self, message_id: str) -> bool:
        """Mark a message as settled. Returns False if it was not in flight."""
        if message_id not in self._ids:
            return False
        self._ids.remove(message_id)
        if not self._ids:
            self._empty.set()
        return True

    async def wait_empty(self, timeout: float | None = None) -> bool:
        """Block until no message is in flight.

        Returns:
            True when the set drained, False if ``timeout`` elapsed first.
        """
        if timeout is None:
            await self._empty.wait()
            return True
        try:
            await asyncio.wait_for(self._empty.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True
