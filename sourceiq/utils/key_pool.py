from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from .normalize import PLACEHOLDER_KEY

logger = logging.getLogger(__name__)

DEFAULT_RESET_WINDOW_SECONDS = 3600.0


class KeyPool:
    """Rotating set of model credentials with per-key failure tracking.

    The pool never blocks and never raises: callers always get some
    credential and only learn whether it works by using it. Health marks
    live beside the credential list, which is never mutated.

    All methods are synchronous and the pool holds no lock. It is shared by
    coroutines on a single event loop, where each read/mark/advance sequence
    runs without an intervening await. Guard it with a mutex before sharing
    it across threads.
    """

    def __init__(
        self,
        credentials: Sequence[str],
        reset_window_seconds: float = DEFAULT_RESET_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        keys = tuple(k for k in credentials if k)
        if not keys:
            logger.error("no usable model credentials configured; using placeholder key")
            keys = (PLACEHOLDER_KEY,)
        self._keys = keys
        self._clock = clock
        self.reset_window_seconds = reset_window_seconds
        self._cursor = 0
        self._failed_at: dict[int, float] = {}
        self._last_reset = clock()

    @property
    def size(self) -> int:
        return len(self._keys)

    @property
    def current_index(self) -> int:
        return self._cursor

    def key_at(self, index: int) -> str:
        return self._keys[index % len(self._keys)]

    def current_key(self) -> str:
        return self._keys[self._cursor]

    def is_failed(self, index: int) -> bool:
        return (index % len(self._keys)) in self._failed_at

    def failed_at(self, index: int) -> Optional[float]:
        return self._failed_at.get(index % len(self._keys))

    def mark_failed(self, index: int) -> None:
        index %= len(self._keys)
        if index not in self._failed_at:
            self._failed_at[index] = self._clock()
            logger.warning("credential marked failed", extra={"key_index": index, "failed": len(self._failed_at)})

    def mark_current_failed(self) -> None:
        self.mark_failed(self._cursor)

    def reset_failures(self) -> None:
        self._failed_at.clear()
        self._last_reset = self._clock()

    def refresh(self) -> bool:
        """Clear all marks if the reset window elapsed or every key is failed."""
        if self._clock() - self._last_reset > self.reset_window_seconds:
            logger.info("credential reset window elapsed; clearing failure marks")
            self.reset_failures()
            return True
        if len(self._failed_at) >= len(self._keys):
            logger.warning("every credential is marked failed; forcing recovery")
            self.reset_failures()
            return True
        return False

    def advance(self) -> str:
        if self._clock() - self._last_reset > self.reset_window_seconds:
            self.reset_failures()

        total = len(self._keys)
        for step in range(total):
            candidate = (self._cursor + 1 + step) % total
            if candidate not in self._failed_at:
                self._cursor = candidate
                return self._keys[candidate]

        logger.warning("every credential is marked failed; resetting pool to first key")
        self.reset_failures()
        self._cursor = 0
        return self._keys[0]

    def healthy_from(self, start: int, include_start: bool = True) -> Optional[int]:
        """First non-failed index scanning forward circularly from ``start``.

        With ``include_start=False`` the scan begins after ``start`` and only
        wraps back to it last, so a single healthy key can be retried.
        """
        total = len(self._keys)
        offset = 0 if include_start else 1
        for step in range(total):
            candidate = (start + offset + step) % total
            if candidate not in self._failed_at:
                return candidate
        return None

    def stats(self) -> dict[str, int]:
        failed = len(self._failed_at)
        return {
            "total": len(self._keys),
            "failed": failed,
            "current_index": self._cursor,
            "available": len(self._keys) - failed,
        }
