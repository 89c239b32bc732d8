"""
Tests for the generation-based schedule cache.
"""

import pytest
from datetime import date
import sys
import threading
import time
from pathlib import Path

# Setup import path for src
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_calendar.cache import ScheduleCache


TARGET = date(2024, 1, 1)


def test_computes_once_per_key():
    cache = ScheduleCache()
    calls = []

    def compute():
        calls.append(1)
        return "value"

    assert cache.get_or_compute(TARGET, "A", compute) == "value"
    assert cache.get_or_compute(TARGET, "A", compute) == "value"
    assert len(calls) == 1
    assert cache.get_stats()["hits"] == 1

    cache.get_or_compute(TARGET, "B", compute)
    assert len(calls) == 2


def test_invalidate_starts_new_generation():
    cache = ScheduleCache()
    counter = iter(range(10))
    first = cache.get_or_compute(TARGET, "A", lambda: next(counter))

    cache.invalidate()
    assert cache.generation == 1
    assert len(cache) == 0
    assert not cache.contains(TARGET, "A")
    assert cache.get_or_compute(TARGET, "A", lambda: next(counter)) == first + 1


def test_failures_are_not_cached():
    cache = ScheduleCache()

    def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.get_or_compute(TARGET, "A", fail)
    assert cache.get_or_compute(TARGET, "A", lambda: "recovered") == "recovered"


def test_concurrent_callers_share_one_computation():
    cache = ScheduleCache()
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = []

    def slow():
        calls.append(1)
        started.set()
        release.wait(5)
        return "shared"

    def worker():
        results.append(cache.get_or_compute(TARGET, "A", slow))

    threads = [threading.Thread(target=worker) for _ in range(5)]
    threads[0].start()
    started.wait(5)
    for thread in threads[1:]:
        thread.start()
    time.sleep(0.05)
    release.set()
    for thread in threads:
        thread.join(5)

    assert results == ["shared"] * 5
    assert len(calls) == 1


class Interrupted(BaseException):
    """Stands in for KeyboardInterrupt without stopping the test run"""


def test_interrupted_computation_releases_waiters():
    cache = ScheduleCache()
    started = threading.Event()
    release = threading.Event()
    outcomes = []

    def interrupted():
        started.set()
        release.wait(5)
        raise Interrupted()

    def call(compute):
        try:
            outcomes.append(cache.get_or_compute(TARGET, "A", compute))
        except Interrupted:
            outcomes.append("interrupted")

    owner = threading.Thread(target=call, args=(interrupted,))
    owner.start()
    assert started.wait(5)
    waiter = threading.Thread(target=call, args=(lambda: "unused",))
    waiter.start()

    # Wait until the second caller shares the running computation
    deadline = time.time() + 5
    while cache.get_stats()["hits"] < 1 and time.time() < deadline:
        time.sleep(0.01)
    release.set()
    owner.join(5)
    waiter.join(5)

    assert not waiter.is_alive()
    assert outcomes == ["interrupted", "interrupted"]
    assert cache.get_or_compute(TARGET, "A", lambda: "recovered") == "recovered"
