"""Tests for the caller-owned schedule cache."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from domain.chat_script import INVALID_CONFIG_CODE, ScheduleValidationError
from service.schedule_cache import ScheduleCache


def test_cache_evicts_least_recently_used() -> None:
    """The oldest untouched entry is dropped first."""
    cache: ScheduleCache[str] = ScheduleCache(max_entries=2)
    cache.get_or_build("a", lambda: "A")
    cache.get_or_build("b", lambda: "B")
    cache.get_or_build("a", lambda: "unused")
    cache.get_or_build("c", lambda: "C")

    assert len(cache) == 2
    assert cache.get_or_build("a", lambda: "rebuilt") == "A"
    assert cache.get_or_build("b", lambda: "rebuilt") == "rebuilt"


def test_cache_counts_hits_and_misses() -> None:
    """Hits and misses are tracked per lookup."""
    cache: ScheduleCache[int] = ScheduleCache()
    calls: list[int] = []

    def builder() -> int:
        calls.append(1)
        return 42

    assert cache.get_or_build("key", builder) == 42
    assert cache.get_or_build("key", builder) == 42
    assert len(calls) == 1
    assert (cache.hits, cache.misses) == (1, 1)

    cache.clear()
    assert len(cache) == 0


def test_cache_is_safe_across_threads() -> None:
    """Concurrent lookups of one key agree on a single stored value."""
    cache: ScheduleCache[object] = ScheduleCache()

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: cache.get_or_build("k", object), range(64)))

    assert len({id(result) for result in results}) == 1
    assert len(cache) == 1


def test_cache_rejects_non_positive_size() -> None:
    """A cache must hold at least one entry."""
    with pytest.raises(ScheduleValidationError) as excinfo:
        ScheduleCache(max_entries=0)
    assert excinfo.value.code == INVALID_CONFIG_CODE
