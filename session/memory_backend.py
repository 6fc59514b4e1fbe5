"""
In-memory session document backend.

Used in development (``SESSION_BACKEND=memory``) and in tests. Documents
expire lazily when read after their time-to-live, and every write bumps a
version counter so compare-and-swap behaves like Couchbase's CAS.
"""

import copy
import itertools
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from session.backend import (
    Conflict,
    DocumentBackend,
    FetchResult,
    Found,
    MutationResult,
    NotFound,
    Stored,
)


@dataclass
class _Entry:
    content: dict[str, Any]
    cas: int
    expires_at: Optional[float]


class InMemoryBackend(DocumentBackend):
    """
    Dict-backed document store with TTL and CAS semantics.

    Operations never await, so each one is atomic on the event loop.

    Attributes:
        clock: Returns the current time in seconds; injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._entries: dict[str, _Entry] = {}
        self._cas = itertools.count(1)

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self.clock():
            del self._entries[key]
            return None
        return entry

    def _expires_at(self, expiry: timedelta) -> Optional[float]:
        seconds = expiry.total_seconds()
        return self.clock() + seconds if seconds > 0 else None

    def _write(self, key: str, content: dict[str, Any], expiry: timedelta) -> Stored:
        entry = _Entry(copy.deepcopy(content), next(self._cas), self._expires_at(expiry))
        self._entries[key] = entry
        return Stored(key, entry.cas)

    def ttl(self, key: str) -> Optional[float]:
        """Seconds left before ``key`` expires, None if absent or without expiry."""
        entry = self._live(key)
        if entry is None or entry.expires_at is None:
            return None
        return entry.expires_at - self.clock()

    async def get(self, key: str) -> FetchResult:
        entry = self._live(key)
        if entry is None:
            return NotFound(key)
        return Found(key, copy.deepcopy(entry.content), entry.cas)

    async def get_and_touch(self, key: str, expiry: timedelta) -> FetchResult:
        entry = self._live(key)
        if entry is None:
            return NotFound(key)
        entry.expires_at = self._expires_at(expiry)
        return Found(key, copy.deepcopy(entry.content), entry.cas)

    async def upsert(self, key: str, content: dict[str, Any],
                     expiry: timedelta) -> MutationResult:
        return self._write(key, content, expiry)

    async def insert(self, key: str, content: dict[str, Any],
                     expiry: timedelta) -> MutationResult:
        if self._live(key) is not None:
            return Conflict(key)
        return self._write(key, content, expiry)

    async def replace(self, key: str, content: dict[str, Any], cas: int,
                      expiry: timedelta) -> MutationResult:
        entry = self._live(key)
        if entry is None:
            return NotFound(key)
        if entry.cas != cas:
            return Conflict(key)
        return self._write(key, content, expiry)

    async def remove(self, key: str) -> MutationResult:
        entry = self._live(key)
        if entry is None:
            return NotFound(key)
        del self._entries[key]
        return Stored(key, entry.cas)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()
