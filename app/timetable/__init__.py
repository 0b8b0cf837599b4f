"""
Upstream timetable access: HTTP client, HTML parsing and the cached service.
"""
from .client import TimetableClient, UpstreamError
from .service import TimetableService, build_caches

__all__ = [
    "TimetableClient",
    "UpstreamError",
    "TimetableService",
    "build_caches",
]
