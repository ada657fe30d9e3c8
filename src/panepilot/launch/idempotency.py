"""Share one in-flight launch between retries that carry the same request id."""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class IdempotencyMismatchError(RuntimeError):
    """Raised when a key is reused with a different payload."""


def fingerprint(payload: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``payload``."""

    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class IdempotencyEntry(Generic[T]):
    fingerprint: str
    expires_at: float
    task: "asyncio.Task[T]"
    settled: bool = False
    successful: bool = False


class IdempotencyCache(Generic[T]):
    """Keyed store of shared tasks.

    Lookup and insert in :meth:`run` happen without an ``await`` in between,
    so under asyncio two callers can never both start work for one key.
    Failed results are dropped as soon as they settle; successful ones stay
    until they expire or are evicted, oldest first.
    """

    def __init__(
        self,
        *,
        ttl_s: float = 60.0,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
        is_success: Callable[[T], bool] = lambda value: bool(getattr(value, "ok", True)),
    ) -> None:
        self._ttl_s = ttl_s
        self._max_entries = max_entries
        self._clock = clock
        self._is_success = is_success
        self._entries: OrderedDict[Any, IdempotencyEntry[T]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return key in self._entries

    def prune(self) -> None:
        now = self._clock()
        for key in [key for key, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[key]

    async def run(self, key: Any, payload_fingerprint: str, factory: Callable[[], Awaitable[T]]) -> T:
        self.prune()
        entry = self._entries.get(key)
        if entry is not None:
            if entry.fingerprint != payload_fingerprint:
                raise IdempotencyMismatchError("requestId payload mismatch")
            if not entry.settled or entry.successful:
                return await asyncio.shield(entry.task)
            del self._entries[key]

        task: asyncio.Task[T] = asyncio.ensure_future(factory())
        entry = IdempotencyEntry(
            fingerprint=payload_fingerprint,
            expires_at=self._clock() + self._ttl_s,
            task=task,
        )
        self._entries[key] = entry
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        task.add_done_callback(lambda done, key=key, entry=entry: self._settle(key, entry, done))
        return await asyncio.shield(task)

    def _settle(self, key: Any, entry: IdempotencyEntry[T], task: "asyncio.Task[T]") -> None:
        entry.settled = True
        entry.successful = (
            not task.cancelled() and task.exception() is None and self._is_success(task.result())
        )
        if not entry.successful and self._entries.get(key) is entry:
            del self._entries[key]


__all__ = ["IdempotencyCache", "IdempotencyEntry", "IdempotencyMismatchError", "fingerprint"]
