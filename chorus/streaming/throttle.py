"""Write throttle for streamed content.

Long, fast streams would otherwise write to the store on every delta. The
throttle opens one of two gates:

- lightweight write: >= ``ui_interval`` since the last write of any kind,
  or >= ``ui_chars`` characters buffered since the last write
- persisted write: >= ``persist_interval`` since the last persisted write,
  or >= ``persist_chars`` characters buffered since the last persisted write

The in-memory accumulator stays authoritative; the terminal flush is
unconditional, so skipped writes never lose data.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from chorus.core.config import Settings


class WriteKind(str, Enum):
    """Outcome of a throttle check."""

    NONE = "none"
    UI = "ui"
    PERSIST = "persist"


@dataclass(frozen=True)
class ThrottleConfig:
    """Gate thresholds; intervals in seconds."""

    ui_interval: float = 0.2
    persist_interval: float = 0.5
    ui_chars: int = 1000
    persist_chars: int = 2000

    @classmethod
    def from_settings(cls, settings: Settings) -> ThrottleConfig:
        return cls(
            ui_interval=settings.ui_write_interval_ms / 1000,
            persist_interval=settings.persist_write_interval_ms / 1000,
            ui_chars=settings.ui_write_chars,
            persist_chars=settings.persist_write_chars,
        )


class WriteThrottle:
    """Decides, per delta, whether the store should be written."""

    def __init__(
        self,
        config: ThrottleConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ThrottleConfig()
        self._clock = clock
        start = clock()
        self._last_write = start
        self._last_persist = start
        self._chars_since_write = 0
        self._chars_since_persist = 0

    def record(self, delta_chars: int) -> WriteKind:
        """Account for a delta and return which write, if any, is due."""
        self._chars_since_write += delta_chars
        self._chars_since_persist += delta_chars
        now = self._clock()
        config = self.config

        if (
            self._chars_since_persist >= config.persist_chars
            or now - self._last_persist >= config.persist_interval
        ):
            self._last_persist = self._last_write = now
            self._chars_since_persist = self._chars_since_write = 0
            return WriteKind.PERSIST

        if (
            self._chars_since_write >= config.ui_chars
            or now - self._last_write >= config.ui_interval
        ):
            self._last_write = now
            self._chars_since_write = 0
            return WriteKind.UI

        return WriteKind.NONE
