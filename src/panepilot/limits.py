"""Sliding-window rate limiting."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable


class RateLimiter:
    """Allow at most ``max_events`` per key inside any ``window_s`` seconds."""

    def __init__(
        self,
        window_s: float,
        max_events: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_s = window_s
        self._max_events = max_events
        self._clock = clock
        self._events: dict[str, deque[float]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        events = self._events.setdefault(key, deque())
        while events and now - events[0] >= self._window_s:
            events.popleft()
        if len(events) >= self._max_events:
            return False
        events.append(now)
        return True

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._events.clear()
        else:
            self._events.pop(key, None)


__all__ = ["RateLimiter"]
