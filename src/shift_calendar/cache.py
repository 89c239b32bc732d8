"""
Schedule Cache for the Shift Calendar

Memoizes computed schedule days by (date, subject key). Entries belong to a
generation; invalidation starts a new generation and drops the old entries
in one step. Concurrent requests for the same key share one computation.
"""

from concurrent.futures import Future
from datetime import date
import logging
import threading
from typing import Any, Callable, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)


class ScheduleCache:
    """Generation-based memo of schedule days, safe for concurrent use"""

    def __init__(self):
        self._lock = threading.Lock()
        self._generation = 0
        self._entries: Dict[Tuple[date, Hashable], Future] = {}
        self.hits = 0
        self.misses = 0

    @property
    def generation(self) -> int:
        return self._generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_compute(self, target: date, key: Hashable, compute_fn: Callable[[], Any]) -> Any:
        """
        Return the cached value for (target, key), computing it at most once.

        The first caller for a key runs compute_fn; concurrent callers wait
        for its result. A failed computation is not cached: the error is
        raised to every waiting caller and the next request tries again.
        """
        cache_key = (target, key)
        with self._lock:
            future = self._entries.get(cache_key)
            if future is not None:
                self.hits += 1
                owner = False
            else:
                self.misses += 1
                future = Future()
                self._entries[cache_key] = future
                entries = self._entries
                owner = True

        if not owner:
            return future.result()

        # Any failure, interrupts included, must resolve the future for waiters
        try:
            value = compute_fn()
        except BaseException as e:
            with self._lock:
                if entries.get(cache_key) is future:
                    del entries[cache_key]
            future.set_exception(e)
            raise

        future.set_result(value)
        return value

    def contains(self, target: date, key: Hashable) -> bool:
        with self._lock:
            future = self._entries.get((target, key))
        return future is not None and future.done() and future.exception() is None

    def invalidate(self):
        """Start a new generation; computations already running finish into the old one"""
        with self._lock:
            self._generation += 1
            dropped = len(self._entries)
            self._entries = {}
        logger.debug(f"Schedule cache invalidated (generation {self._generation}, {dropped} entries dropped)")

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "generation": self._generation,
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses
            }
