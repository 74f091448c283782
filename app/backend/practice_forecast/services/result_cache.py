"""Application-wide TTL cache with single-flight loading.

One ``ResultCache`` is shared by every request of an application. For any
key at most one computation is in flight; concurrent callers await the
same task. Callers are shielded from each other: a caller that gets
cancelled stops waiting without aborting the shared work, while
``cancel(key)`` aborts the work itself. Only successful, non-stale results
are stored, so invalidation that races with a load can never be undone by
the load finishing later.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float
    created_at: float
    last_accessed: float
    hits: int = 0
    # Pinned entries are never chosen for LRU eviction.
    pinned: bool = False


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    max_entries: int
    hits: int
    misses: int
    hit_rate: float
    loads: int
    load_failures: int
    evictions: int
    in_flight: int


@dataclass(frozen=True, slots=True)
class WarmUpEntry:
    key: str
    loader: Loader
    ttl_seconds: float | None = None


@dataclass(slots=True)
class _Flight:
    ttl_seconds: float
    task: asyncio.Task | None = None
    stale: bool = False


def _compile(pattern: str | re.Pattern[str]) -> re.Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern)
    return pattern


def _consume_outcome(task: asyncio.Task) -> None:
    # Retrieve the exception so an unobserved failure is not reported twice.
    if not task.cancelled():
        task.exception()


class ResultCache:
    def __init__(
        self,
        *,
        default_ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._flights: dict[str, _Flight] = {}
        self._hits = 0
        self._misses = 0
        self._loads = 0
        self._load_failures = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    # ---------- Reads ----------
    def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.expires_at <= now:
            del self._entries[key]
            logger.debug("Cache entry expired: %s", key)
            return None
        entry.hits += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._lookup(key)
        if entry is None:
            self._misses += 1
            return default
        self._hits += 1
        return entry.value

    def get_by_pattern(self, pattern: str | re.Pattern[str]) -> dict[str, Any]:
        regex = _compile(pattern)
        now = self._clock()
        return {
            key: entry.value
            for key, entry in self._entries.items()
            if entry.expires_at > now and regex.search(key)
        }

    def is_in_flight(self, key: str) -> bool:
        return key in self._flights

    # ---------- Writes ----------
    def set(self, key: str, value: Any, ttl_seconds: float | None = None, *, pinned: bool = False) -> None:
        """Store ``value`` under ``key``.

        A pinned entry still expires and can still be invalidated, but LRU
        eviction skips it.
        """

        self._detach(key)
        self._store(key, value, self._ttl(ttl_seconds), pinned=pinned)

    def _ttl(self, ttl_seconds: float | None) -> float:
        return self.default_ttl_seconds if ttl_seconds is None else ttl_seconds

    def _store(self, key: str, value: Any, ttl_seconds: float, *, pinned: bool = False) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=now + ttl_seconds,
            created_at=now,
            last_accessed=now,
            pinned=pinned,
        )
        self._entries.move_to_end(key)
        self._evict()

    def _evict(self) -> None:
        while len(self._entries) > self.max_entries:
            evicted_key = next((key for key, entry in self._entries.items() if not entry.pinned), None)
            if evicted_key is None:
                break
            del self._entries[evicted_key]
            self._evictions += 1
            logger.debug("Cache evicted least recently used entry: %s", evicted_key)

    async def get_or_set(self, key: str, compute: Loader, ttl_seconds: float | None = None) -> Any:
        """Return the cached value for ``key`` or compute and store it.

        Concurrent calls for the same key share one computation. A failure
        is raised to every waiter and nothing is stored.
        """

        entry = self._lookup(key)
        if entry is not None:
            self._hits += 1
            logger.debug("Cache hit: %s", key)
            return entry.value

        self._misses += 1
        flight = self._flights.get(key)
        if flight is None:
            flight = self._start_flight(key, compute, self._ttl(ttl_seconds))
        else:
            logger.debug("Joining in-flight computation: %s", key)
        return await asyncio.shield(flight.task)

    def _start_flight(self, key: str, compute: Loader, ttl_seconds: float) -> _Flight:
        logger.debug("Cache miss, loading: %s", key)
        flight = _Flight(ttl_seconds=ttl_seconds)
        flight.task = asyncio.ensure_future(self._load(key, compute, flight))
        flight.task.add_done_callback(_consume_outcome)
        self._flights[key] = flight
        return flight

    async def _load(self, key: str, compute: Loader, flight: _Flight) -> Any:
        try:
            value = await compute()
        except asyncio.CancelledError:
            logger.info("Cache computation cancelled: %s", key)
            raise
        except Exception:
            self._load_failures += 1
            logger.warning("Cache computation failed: %s", key, exc_info=True)
            raise
        finally:
            if self._flights.get(key) is flight:
                del self._flights[key]

        self._loads += 1
        if flight.stale:
            logger.info("Discarding result invalidated while loading: %s", key)
        else:
            self._store(key, value, flight.ttl_seconds)
        return value

    async def warm_up(self, entries: Sequence[WarmUpEntry]) -> int:
        """Load several entries concurrently; failures are logged and skipped."""

        results = await asyncio.gather(
            *(self.get_or_set(entry.key, entry.loader, entry.ttl_seconds) for entry in entries),
            return_exceptions=True,
        )
        loaded = 0
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                logger.warning("Cache warm-up failed for %s: %r", entry.key, result)
                continue
            loaded += 1
        logger.info("Cache warm-up loaded %d/%d entries", loaded, len(entries))
        return loaded

    # ---------- Invalidation ----------
    def _detach(self, key: str) -> None:
        flight = self._flights.pop(key, None)
        if flight is not None:
            flight.stale = True

    def invalidate(self, key: str) -> bool:
        self._detach(key)
        removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info("Cache invalidated: %s", key)
        return removed

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Remove stored entries whose key matches ``pattern`` (``re.search``).

        Matching in-flight computations are detached as well; the return
        value counts stored entries only.
        """

        regex = _compile(pattern)
        for key in [key for key in self._flights if regex.search(key)]:
            self._detach(key)
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            del self._entries[key]
        logger.info("Cache invalidated %d entries matching %s", len(matched), regex.pattern)
        return len(matched)

    def cancel(self, key: str) -> bool:
        """Abort the in-flight computation for ``key``; its waiters see cancellation."""

        flight = self._flights.pop(key, None)
        if flight is None or flight.task is None:
            return False
        flight.stale = True
        return flight.task.cancel()

    def clear_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        for key in list(self._flights):
            self._detach(key)
        self._entries.clear()
        logger.info("Cache cleared")

    # ---------- Metrics ----------
    def stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        return CacheStats(
            size=len(self._entries),
            max_entries=self.max_entries,
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / lookups if lookups else 0.0,
            loads=self._loads,
            load_failures=self._load_failures,
            evictions=self._evictions,
            in_flight=len(self._flights),
        )

    @staticmethod
    def serialize_stats(stats: CacheStats) -> dict[str, object]:
        return {
            "size": stats.size,
            "max_entries": stats.max_entries,
            "hits": stats.hits,
            "misses": stats.misses,
            "hit_rate": round(stats.hit_rate, 4),
            "loads": stats.loads,
            "load_failures": stats.load_failures,
            "evictions": stats.evictions,
            "in_flight": stats.in_flight,
        }
