"""Caller-owned memo of built schedules."""

from __future__ import annotations

from collections import OrderedDict
import threading
from typing import Callable, Generic, Hashable, TypeVar

from domain.chat_script import INVALID_CONFIG_CODE, ScheduleValidationError

DEFAULT_CACHE_ENTRIES = 32

ValueT = TypeVar("ValueT")


class ScheduleCache(Generic[ValueT]):
    """Bounded LRU cache keyed by the complete, immutable request.

    Keys hold every input that affects the result, so entries never go
    stale and need no invalidation. The lock only guards the mapping; the
    builder runs outside it, so two threads racing on one key may both
    build, and the first stored value wins.
    """

    def __init__(self, max_entries: int = DEFAULT_CACHE_ENTRIES) -> None:
        if max_entries <= 0:
            raise ScheduleValidationError(
                INVALID_CONFIG_CODE, "max_entries must be positive"
            )
        self._max_entries = max_entries
        self._entries: OrderedDict[Hashable, ValueT] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_build(self, key: Hashable, builder: Callable[[], ValueT]) -> ValueT:
        """Return the cached value for ``key``, building it on a miss."""
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            self.misses += 1

        value = builder()

        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]
            self._entries[key] = value
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
        return value

    def clear(self) -> None:
        """Drop every cached entry."""
        with self._lock:
            self._entries.clear()
