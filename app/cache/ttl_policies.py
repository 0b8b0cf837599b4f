"""
TTL configuration and response caching headers per cache type.
"""
from enum import Enum
from typing import Dict

from config.settings import settings


class CacheType(Enum):
    """Logical cache domains. The value doubles as the persisted `type` column."""
    FACULTIES = "faculties"
    COURSES = "courses"
    SCHEDULE = "schedule"
    LOGOS = "logos"
    PHOTOS = "photos"
    RESOURCES = "resources"


# TTL configuration by type (in seconds)
TTL_CONFIG: Dict[CacheType, int] = {
    CacheType.FACULTIES: settings.cache_ttl_faculties,
    CacheType.COURSES: settings.cache_ttl_courses,
    CacheType.SCHEDULE: settings.cache_ttl_schedule,
    CacheType.LOGOS: settings.cache_ttl_logos,
    CacheType.PHOTOS: settings.cache_ttl_photos,
    CacheType.RESOURCES: settings.cache_ttl_resources,
}

# Shared-cache lifetime advertised to CDNs, where it differs from the TTL
SHARED_MAX_AGE: Dict[CacheType, int] = {
    CacheType.SCHEDULE: 3600,
}

# Degraded responses must not be pinned by shared caches
STALE_CACHE_CONTROL = "no-store"


def get_ttl_for_type(cache_type: CacheType) -> int:
    """
    Get the TTL for a cache type.

    Args:
        cache_type: The cache domain

    Returns:
        TTL in seconds
    """
    return TTL_CONFIG[cache_type]


def cache_control_for(cache_type: CacheType, is_stale: bool = False) -> str:
    """
    Build the Cache-Control header for a response served from a cache type.

    Fresh responses let shared caches keep the body for the type's lifetime
    and serve it stale while revalidating for as long again.
    """
    if is_stale:
        return STALE_CACHE_CONTROL
    max_age = SHARED_MAX_AGE.get(cache_type, get_ttl_for_type(cache_type))
    return f"public, max-age=0, s-maxage={max_age}, stale-while-revalidate={max_age}"
