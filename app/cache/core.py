"""
Core cache data structures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any


class CacheSource(Enum):
    """How a value reached the caller."""
    FRESH = "fresh"         # Within TTL
    UPSTREAM = "upstream"   # Computed by this caller
    SHARED = "shared"       # Joined another caller's in-flight computation
    STALE = "stale"         # Past TTL, served after an upstream failure


# Values for the X-Cache response header
X_CACHE_HEADERS = {
    CacheSource.FRESH: "HIT",
    CacheSource.UPSTREAM: "MISS",
    CacheSource.SHARED: "SHARED",
    CacheSource.STALE: "STALE",
}


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached value and its absolute expiry (wall-clock seconds).

    Entries are replaced on refresh, never mutated.
    """
    value: Any
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at

    def staleness(self, now: float) -> float:
        """Seconds since expiry (negative while still fresh)."""
        return now - self.expires_at


@dataclass(frozen=True)
class CacheLookup:
    """Result of a stale-tolerant read."""
    value: Any
    is_stale: bool


@dataclass(frozen=True)
class CacheResult:
    """
    A value served by the cache together with its provenance.

    Route handlers use `is_stale` to pick response caching headers.
    """
    value: Any
    source: CacheSource

    @property
    def is_stale(self) -> bool:
        return self.source is CacheSource.STALE

    @property
    def x_cache(self) -> str:
        return X_CACHE_HEADERS[self.source]
