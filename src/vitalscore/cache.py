"""Per-date result cache with single-writer computation.

Each calendar day has at most one live entry. Concurrent callers asking
for the same day wait on that day's lock, so the factory runs once.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    inserted_at: float  # clock() reading at insertion
    date_key: str


class DateCache(Generic[T]):
    """Calendar-day keyed cache with an optional time-to-live."""

    def __init__(
        self,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def key(day: date) -> str:
        return day.isoformat()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, day: date) -> bool:
        return self.get(day) is not None

    def _expired(self, entry: CacheEntry[T]) -> bool:
        if self.ttl is None:
            return False
        return self._clock() - entry.inserted_at >= self.ttl

    def days(self) -> list[date]:
        """Dates with an entry, live or not, oldest first."""
        return sorted(date.fromisoformat(k) for k in self._entries)

    def _drop(self, k: str) -> bool:
        found = self._entries.pop(k, None) is not None
        lock = self._locks.get(k)
        if lock is not None and not lock.locked():
            del self._locks[k]
        return found

    def get(self, day: date) -> T | None:
        """Return the live value for ``day``, dropping it if expired."""
        k = self.key(day)
        entry = self._entries.get(k)
        if entry is None:
            return None
        if self._expired(entry):
            self._drop(k)
            return None
        return entry.value

    def put(self, day: date, value: T) -> None:
        k = self.key(day)
        self._entries[k] = CacheEntry(value=value, inserted_at=self._clock(), date_key=k)

    async def get_or_compute(self, day: date, factory: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value or run ``factory`` under the day's lock.

        A factory exception leaves the cache untouched and propagates.
        """
        hit = self.get(day)
        if hit is not None:
            return hit

        lock = self._locks.setdefault(self.key(day), asyncio.Lock())
        async with lock:
            hit = self.get(day)
            if hit is not None:
                return hit
            value = await factory()
            self.put(day, value)
            return value

    def invalidate(self, day: date) -> bool:
        return self._drop(self.key(day))

    def prune(self, before: date) -> int:
        """Drop every entry older than ``before``. Returns how many went."""
        stale = [k for k in self._entries if date.fromisoformat(k) < before]
        for k in stale:
            self._drop(k)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        # a held lock still has a computation behind it
        self._locks = {k: lock for k, lock in self._locks.items() if lock.locked()}
