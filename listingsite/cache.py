"""
listingsite/cache.py

Small read-through cache used by the copy and feature-flag readers.

Entries older than the staleness window are still served; the reload runs
behind the caller so rendering never waits on a fresh read when any cached
value exists. Only a cold miss loads synchronously.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Set, Tuple

Loader = Callable[[], Any]
RefreshRunner = Callable[[Callable[[], None]], None]


def run_in_thread(job: Callable[[], None]) -> None:
    threading.Thread(target=job, daemon=True).start()


def run_inline(job: Callable[[], None]) -> None:
    job()


class ReadThroughCache:
    """
    TTL cache with stale-while-revalidate reads and FIFO eviction.

    Args:
        ttl_seconds: Age after which an entry is stale and gets reloaded
        max_entries: Oldest entry is evicted once this many are cached
        clock: Monotonic time source, injectable for tests
        refresh_runner: Runs background reloads (a daemon thread by default)
        label: Tag used in log lines
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
        refresh_runner: RefreshRunner = run_in_thread,
        label: str = "CACHE",
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._refresh_runner = refresh_runner
        self._label = label
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._refreshing: Set[Hashable] = set()
        # bumped by invalidate(); a load that started under an older
        # generation is not written back
        self._epoch = 0
        self._generations: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, loader: Loader) -> Any:
        """
        Return the cached value for `key`, loading it on a miss.

        A stale hit returns the old value immediately and schedules one
        reload. Loader exceptions propagate only on a cold miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            generation = self._generation(key)

        if entry is None:
            value = loader()
            self._store(key, value, generation)
            return value

        value, loaded_at = entry
        if self._clock() - loaded_at >= self.ttl_seconds:
            self._schedule_refresh(key, loader)
        return value

    def peek(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
        return entry[0] if entry else None

    def set(self, key: Hashable, value: Any) -> None:
        self._store(key, value)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
                self._generations.clear()
                self._epoch += 1
            else:
                self._entries.pop(key, None)
                self._generations[key] = self._generations.get(key, 0) + 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    # ------------------------------------------------------------------

    def _generation(self, key: Hashable) -> Tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def _store(self, key: Hashable, value: Any, generation: Optional[Tuple[int, int]] = None) -> None:
        with self._lock:
            if generation is not None and generation != self._generation(key):
                return
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]
            self._entries[key] = (value, self._clock())

    def _schedule_refresh(self, key: Hashable, loader: Loader) -> None:
        with self._lock:
            if key in self._refreshing:
                return
            self._refreshing.add(key)
            generation = self._generation(key)

        def _job() -> None:
            try:
                self._store(key, loader(), generation)
            except Exception as e:
                # keep serving the stale value until the next window
                print(f"[{self._label}] Refresh failed for {key!r}: {type(e).__name__}: {e}")
            finally:
                with self._lock:
                    self._refreshing.discard(key)

        self._refresh_runner(_job)
