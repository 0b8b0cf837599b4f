"""
Caching module with request coalescing, stale fallback and a persisted tier.
"""
from .core import CacheEntry, CacheLookup, CacheResult, CacheSource
from .ttl_policies import (
    TTL_CONFIG,
    CacheType,
    get_ttl_for_type,
    cache_control_for,
)
from .coalescer import RequestCoalescer, CoalesceTimeoutError
from .store import PersistentCacheStore
from .manager import CoalescingCache

__all__ = [
    # Core types
    "CacheEntry",
    "CacheLookup",
    "CacheResult",
    "CacheSource",
    # TTL policies
    "TTL_CONFIG",
    "CacheType",
    "get_ttl_for_type",
    "cache_control_for",
    # Coalescing
    "RequestCoalescer",
    "CoalesceTimeoutError",
    # Tiers
    "PersistentCacheStore",
    "CoalescingCache",
]
