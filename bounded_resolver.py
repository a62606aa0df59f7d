"""
Bounded Resolver - Concurrency-capped, TTL-cached wrapper for external lookups

Used for reverse geocoding of trip endpoints: a report over dozens of
vehicles may ask for hundreds of addresses at once, while the geocoding
service tolerates only a couple of simultaneous requests.

- ConcurrencyGate: at most N lookups in flight, waiters released FIFO
- TTLCache: key -> value with expiry checked lazily on read
- BoundedResolver: cache first, then the gated lookup; failures become None

Instances are owned by the host (one per process, or one per test).

Usage:
    resolver = BoundedResolver(max_concurrency=2, ttl_seconds=86400)
    address = await resolver.resolve(coord_key(lat, lon, 4), lambda: client.reverse_async(lat, lon))
"""

import asyncio
import inspect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, Optional, Union

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Union[Any, Awaitable[Any]]]


class ConcurrencyGate:
    """
    Async semaphore with strict FIFO hand-off.

    A released slot goes straight to the oldest waiter, so a late arrival
    can never overtake a queued caller. capacity 0/None means unlimited.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity if capacity and capacity > 0 else None
        self._in_flight = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    async def acquire(self) -> None:
        if self.capacity is None or (
            self._in_flight < self.capacity and not self._waiters
        ):
            self._in_flight += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Slot was handed over just before cancellation: pass it on
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Hand the slot over; in_flight stays the same
                fut.set_result(None)
                return
        self._in_flight -= 1

    async def __aenter__(self) -> "ConcurrencyGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


@dataclass
class CacheEntry:
    """Single cache entry with expiration"""

    key: Hashable
    value: Any
    expires_at: float


class TTLCache:
    """
    Thread-safe in-memory cache with TTL.

    Expired entries are only dropped when read again (or on purge_expired).
    With max_size=None the cache grows with every distinct key, so hosts
    that resolve spatially diverse points should set max_size or call
    purge_expired periodically.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if not self._clock() < entry.expires_at:
                del self._entries[key]
                self._stats["misses"] += 1
                return None

            self._stats["hits"] += 1
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if (
                self.max_size is not None
                and key not in self._entries
                and len(self._entries) >= self.max_size
            ):
                self._evict_oldest()

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=self._clock() + (self.ttl_seconds if ttl is None else ttl),
            )
            self._stats["sets"] += 1

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, v in self._entries.items() if not now < v.expires_at]
            for key in expired:
                del self._entries[key]
            if expired:
                logger.debug(f"Cache purge removed {len(expired)} expired entries")
            return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
            return {
                "entries": len(self._entries),
                "max_size": self.max_size,
                "hit_rate_pct": round(hit_rate, 2),
                **self._stats,
            }

    def _evict_oldest(self) -> None:
        # Dicts keep insertion order, first key is the oldest write
        oldest_key = next(iter(self._entries), None)
        if oldest_key is not None:
            del self._entries[oldest_key]
            self._stats["evictions"] += 1


class BoundedResolver:
    """
    Cached, concurrency-capped lookup.

    resolve() returns a fresh cache hit immediately. On a miss the caller
    queues for a gate slot and runs compute_fn (sync or async). Non-None
    results are cached. Exceptions from compute_fn are logged and surface
    as None; nothing is cached for them, so the next caller retries.
    compute_fn is expected to enforce its own timeout.
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        ttl_seconds: float = 24 * 3600.0,
        max_cache_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "resolver",
    ):
        self.name = name
        self.gate = ConcurrencyGate(max_concurrency)
        self.cache = TTLCache(ttl_seconds, max_size=max_cache_size, clock=clock)
        self.failures = 0

    @classmethod
    def from_settings(cls, settings, name: str = "geocode") -> "BoundedResolver":
        geo = settings.geocode
        return cls(
            max_concurrency=geo.max_concurrency,
            ttl_seconds=geo.cache_ttl_seconds,
            max_cache_size=geo.cache_max_size,
            name=name,
        )

    async def resolve(self, key: Hashable, compute_fn: ComputeFn) -> Optional[Any]:
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        async with self.gate:
            # Another caller may have filled the key while we queued
            cached = self.cache.get(key)
            if cached is not None:
                return cached

            try:
                result = compute_fn()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                self.failures += 1
                logger.warning(f"[{self.name}] lookup failed for {key!r}: {e}")
                return None

        if result is not None:
            self.cache.set(key, result)
        return result
