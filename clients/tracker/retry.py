"""Bounded retry queue for undelivered tracker events.

Entries are keyed by ``(kind, session_id)``: a fresher progress snapshot for
the same session replaces the stale one instead of queueing behind it. Delay
doubles per failed attempt (``base * 2**(failures - 1)``) and an entry is dropped
after ``max_attempts`` failures. When full, the oldest entry is evicted.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EntryState(str, enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    ABANDONED = "abandoned"


@dataclass
class RetryEntry(Generic[T]):
    key: Hashable
    item: T
    attempts: int
    due_at: float
    state: EntryState = EntryState.PENDING


class RetryQueue(Generic[T]):
    def __init__(
        self,
        *,
        base_delay: float = 5.0,
        max_attempts: int = 3,
        capacity: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.capacity = capacity
        self._clock = clock
        self._entries: OrderedDict[Hashable, RetryEntry[T]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> RetryEntry[T] | None:
        return self._entries.get(key)

    def enqueue(self, key: Hashable, item: T, *, attempts: int = 1) -> RetryEntry[T] | None:
        """Schedule ``item`` after a failed delivery; ``attempts`` counts failures so far.

        Returns None when the entry is abandoned instead.
        """
        if attempts >= self.max_attempts:
            logger.warning("Dropping event %s after %d failed attempts", key, attempts)
            self._entries.pop(key, None)
            return None

        entry = RetryEntry(
            key=key,
            item=item,
            attempts=attempts,
            due_at=self._clock() + self.base_delay * (2 ** (attempts - 1)),
            state=EntryState.RETRYING,
        )
        # Replacing moves the key to the newest end.
        self._entries.pop(key, None)
        self._entries[key] = entry
        while len(self._entries) > self.capacity:
            dropped_key, _ = self._entries.popitem(last=False)
            logger.warning("Retry queue full; dropped oldest event %s", dropped_key)
        return entry

    def due(self) -> list[RetryEntry[T]]:
        now = self._clock()
        return [
            entry
            for entry in self._entries.values()
            if entry.state is EntryState.RETRYING and entry.due_at <= now
        ]

    def mark_in_flight(self, entry: RetryEntry[T]) -> None:
        entry.state = EntryState.IN_FLIGHT

    def mark_succeeded(self, entry: RetryEntry[T]) -> None:
        entry.state = EntryState.SUCCEEDED
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    def mark_failed(self, entry: RetryEntry[T]) -> None:
        """Reschedule after another failure unless a newer item superseded it."""
        current = self._entries.get(entry.key)
        if current is not entry:
            return
        result = self.enqueue(entry.key, entry.item, attempts=entry.attempts + 1)
        entry.state = EntryState.ABANDONED if result is None else EntryState.RETRYING

    def next_due_in(self) -> float | None:
        """Seconds until the earliest retry, or None when nothing is waiting."""
        waiting = [e.due_at for e in self._entries.values() if e.state is EntryState.RETRYING]
        if not waiting:
            return None
        return max(0.0, min(waiting) - self._clock())

    def discard(self, key: Hashable) -> None:
        """Forget a queued entry that a newer delivery made obsolete."""
        entry = self._entries.get(key)
        if entry is not None and entry.state is not EntryState.IN_FLIGHT:
            del self._entries[key]

    def drain(self) -> list[RetryEntry[T]]:
        entries = list(self._entries.values())
        self._entries.clear()
        return entries
