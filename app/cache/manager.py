"""
Coalescing TTL cache with stale fallback.

Reads go memory first, persisted store second, upstream last. Concurrent
misses for one key share a single upstream call, and expired entries are
kept for a grace window so they can be served when the upstream fails.
"""
import threading
import logging
import time
from typing import Dict, Optional, Callable, Any, Tuple

from .core import CacheEntry, CacheLookup, CacheResult, CacheSource
from .coalescer import MISSING, RequestCoalescer
from .store import PersistentCacheStore

logger = logging.getLogger("cache.manager")


class CoalescingCache:
    """
    One cache domain (faculties, courses, schedule, ...) with:
    - Fixed default TTL, overridable per call
    - Request coalescing for concurrent misses
    - Stale fallback when the upstream fails
    - Optional persisted tier that survives restarts
    - Periodic sweep of entries past their grace window

    Entry lifecycle: ABSENT -> PENDING -> FRESH -> STALE -> ABSENT (swept).
    A successful refresh moves STALE straight back to FRESH; a failed one
    leaves the entry STALE.

    Lock order is coalescer lock -> entry lock. Neither is held across the
    upstream call or a persisted-store call.
    """

    def __init__(
        self,
        namespace: str,
        ttl: float,
        store: Optional[PersistentCacheStore] = None,
        stale_grace: float = 0.0,
        sweep_interval: Optional[float] = None,
        coalesce_timeout: Optional[float] = 30.0,
        sweep_on_read: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            namespace: Cache domain name, written as the persisted `type`
            ttl: Default time-to-live in seconds
            store: Persisted fallback tier (None = memory only)
            stale_grace: Seconds an expired entry is retained for fallback
            sweep_interval: Seconds between background sweeps (None = no timer)
            coalesce_timeout: Max seconds a waiter blocks on another caller's fetch
            sweep_on_read: Sweep memory before every get/get_with_stale
            clock: Wall-clock source in epoch seconds
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        self.namespace = namespace
        self.ttl = ttl
        self.stale_grace = stale_grace
        self.sweep_interval = sweep_interval
        self.sweep_on_read = sweep_on_read
        self._store = store
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)

        # Background sweep
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_lock = threading.Lock()
        self._closed = False

        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "hits_persisted": 0,
            "misses": 0,
            "shared": 0,
            "failures": 0,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the fresh value for key, or None. Never computes."""
        self._validate(key)
        now = self._clock()
        if self.sweep_on_read:
            self._sweep_memory(now, self.stale_grace)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(now):
                logger.debug(f"CACHE HIT (fresh): {self.namespace}/{key}")
                return entry.value
            if entry is not None:
                return None

        persisted = self._read_persisted(key)
        if persisted is not None and persisted.is_fresh(now):
            return persisted.value
        return None

    def get_with_stale(self, key: str) -> Optional[CacheLookup]:
        """Return any cached value for key tagged with its staleness, or None."""
        self._validate(key)
        now = self._clock()
        if self.sweep_on_read:
            self._sweep_memory(now, self.stale_grace)

        with self._lock:
            entry = self._entries.get(key)

        if entry is None:
            entry = self._read_persisted(key)
            if entry is None:
                return None

        return CacheLookup(value=entry.value, is_stale=not entry.is_fresh(now))

    def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the fresh value for key, computing it at most once across
        concurrent callers.

        Raises whatever compute_fn raised (to every caller sharing that
        computation). A previous stale entry is left untouched on failure.
        """
        value, _ = self._get_or_compute(key, compute_fn, ttl)
        return value

    def fetch(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> CacheResult:
        """
        Stale-while-revalidate read for route handlers.

        Like get_or_compute, but an upstream failure is answered with the
        last known value (source STALE) when one exists. Re-raises otherwise.
        """
        try:
            value, source = self._get_or_compute(key, compute_fn, ttl)
            return CacheResult(value=value, source=source)
        except Exception as e:
            fallback = self.get_with_stale(key)
            if fallback is None:
                raise
            with self._lock:
                self._stats["hits_stale"] += 1
            logger.info(f"CACHE STALE FALLBACK: {self.namespace}/{key} ({e!r})")
            source = CacheSource.STALE if fallback.is_stale else CacheSource.FRESH
            return CacheResult(value=fallback.value, source=source)

    def _get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl: Optional[float],
    ) -> Tuple[Any, CacheSource]:
        self._validate(key, ttl)
        ttl = ttl if ttl is not None else self.ttl

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(now):
                self._stats["hits_fresh"] += 1
                logger.debug(f"CACHE HIT (fresh): {self.namespace}/{key}")
                return entry.value, CacheSource.FRESH

        # Cold process: the persisted tier may still hold a fresh value
        if entry is None:
            persisted = self._read_persisted(key)
            if persisted is not None and persisted.is_fresh(now):
                with self._lock:
                    self._stats["hits_persisted"] += 1
                return persisted.value, CacheSource.FRESH

        stored: Dict[str, CacheEntry] = {}

        def lookup() -> Any:
            with self._lock:
                current = self._entries.get(key)
                if current is not None and current.is_fresh(self._clock()):
                    return current.value
            return MISSING

        def on_result(value: Any) -> None:
            stored["entry"] = self._install(key, value, ttl)

        try:
            value, source = self._coalescer.get_or_fetch(
                key, compute_fn, lookup=lookup, on_result=on_result,
            )
        except Exception:
            with self._lock:
                self._stats["failures"] += 1
            raise

        with self._lock:
            if source is CacheSource.UPSTREAM:
                self._stats["misses"] += 1
            elif source is CacheSource.SHARED:
                self._stats["shared"] += 1
            else:
                self._stats["hits_fresh"] += 1

        if source is CacheSource.UPSTREAM:
            logger.info(f"CACHE MISS: {self.namespace}/{key} (computed)")
            self._write_persisted(key, stored["entry"])
        elif source is CacheSource.SHARED:
            logger.debug(f"CACHE SHARED: {self.namespace}/{key}")

        return value, source

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Install a fresh entry, overwriting any existing one."""
        self._validate(key, ttl)
        entry = self._install(key, value, ttl if ttl is not None else self.ttl)
        self._write_persisted(key, entry)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
        if self._store is not None:
            self._store.delete(key)

    def delete_by_type(self) -> int:
        """
        Drop every entry of this namespace from both tiers.

        Returns:
            Persisted rows removed when a store is configured (the memory
            tier only mirrors it), otherwise memory entries removed
        """
        count = self.clear()
        if self._store is not None:
            count = self._store.delete_by_type(self.namespace)
        return count

    def clear(self) -> int:
        """
        Clear all in-memory entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} {self.namespace} cache entries")
        return count

    def cleanup_expired(self, grace: Optional[float] = None) -> int:
        """
        Delete entries whose staleness exceeds the grace window.

        An entry with now - expires_at > grace is removed; entries inside
        the window stay available as stale fallback.

        Returns:
            Number of memory entries plus persisted rows removed
        """
        grace = self.stale_grace if grace is None else grace
        now = self._clock()
        removed = self._sweep_memory(now, grace)
        if self._store is not None:
            removed += self._store.delete_expired(now - grace, cache_type=self.namespace)
        if removed:
            logger.info(f"Swept {removed} expired {self.namespace} cache entries")
        return removed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep. Safe to call more than once."""
        with self._sweeper_lock:
            if self._closed:
                raise RuntimeError(f"{self.namespace} cache is closed")
            if self._sweeper is not None or not self.sweep_interval:
                return
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                name=f"cache-sweep-{self.namespace}",
                daemon=True,
            )
            self._sweeper.start()
            logger.debug(f"Started {self.namespace} sweeper every {self.sweep_interval}s")

    def close(self) -> None:
        """Stop the periodic sweep. The cache stays readable."""
        with self._sweeper_lock:
            self._closed = True
            self._stop.set()
            sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.join(timeout=5)

    def __enter__(self) -> "CoalescingCache":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_sweeping(self) -> bool:
        sweeper = self._sweeper
        return sweeper is not None and sweeper.is_alive()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.warning(f"Sweep failed for {self.namespace}: {e}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _install(self, key: str, value: Any, ttl: float) -> CacheEntry:
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
        with self._lock:
            self._entries[key] = entry
        return entry

    def _sweep_memory(self, now: float, grace: float) -> int:
        with self._lock:
            expired = [
                key for key, entry in self._entries.items()
                if entry.staleness(now) > grace
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def _read_persisted(self, key: str) -> Optional[CacheEntry]:
        """Read through to the persisted tier and warm memory with the result."""
        if self._store is None:
            return None
        entry = self._store.read(key)
        if entry is None:
            return None
        with self._lock:
            current = self._entries.get(key)
            if current is None or current.expires_at < entry.expires_at:
                self._entries[key] = entry
            else:
                entry = current
        logger.debug(f"Loaded {self.namespace}/{key} from persisted store")
        return entry

    def _write_persisted(self, key: str, entry: CacheEntry) -> None:
        if self._store is not None:
            self._store.write(key, entry.value, entry.expires_at, self.namespace)

    def _validate(self, key: str, ttl: Optional[float] = None) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("cache key must be a non-empty string")
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            stats = dict(self._stats)
            stats["entries"] = len(self._entries)
        stats["namespace"] = self.namespace
        stats["persisted"] = self._store is not None
        stats["sweeping"] = self.is_sweeping
        stats["coalescer"] = self._coalescer.get_stats()
        return stats
