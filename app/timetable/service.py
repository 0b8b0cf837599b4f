"""
Timetable data service: upstream pages behind the coalescing cache.

Every public read returns a CacheResult so route handlers can tell fresh,
shared and stale (degraded) responses apart. Cached values are plain
JSON-ready dicts/lists so they can be persisted as-is.
"""
import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from app.cache import (
    CacheResult,
    CacheType,
    CoalescingCache,
    PersistentCacheStore,
    get_ttl_for_type,
)
from app.schemas import ResourceLink, WeekSchedule
from app.timetable import parser
from app.timetable.client import TimetableClient, UpstreamError
from app.timetable.weeks import monday_of_week, schedule_cache_key, week_id
from config.settings import settings

logger = logging.getLogger("timetable.service")

FACULTIES_CACHE_KEY = "faculties"
LOGOS_CACHE_KEY = "logos"
PHOTOS_CACHE_KEY = "photos"


def build_caches(
    store: Optional[PersistentCacheStore] = None,
    clock: Callable[[], float] = time.time,
) -> Dict[CacheType, CoalescingCache]:
    """One cache per domain, configured from settings."""
    return {
        cache_type: CoalescingCache(
            namespace=cache_type.value,
            ttl=get_ttl_for_type(cache_type),
            store=store,
            stale_grace=settings.cache_stale_grace_seconds,
            sweep_interval=settings.cache_sweep_interval_seconds,
            coalesce_timeout=settings.cache_coalesce_timeout,
            sweep_on_read=settings.cache_sweep_on_read,
            clock=clock,
        )
        for cache_type in CacheType
    }


class TimetableService:
    """
    Faculties, courses and week schedules from the upstream timetable site.

    Args:
        client: Upstream HTTP client
        caches: Cache per CacheType (see build_caches)
        max_workers: Threads for parallel side fetches (logos, photos, resources)
    """

    def __init__(
        self,
        client: TimetableClient,
        caches: Dict[CacheType, CoalescingCache],
        photos_url: str = settings.faculty_photos_url,
        tusur_url: str = settings.tusur_base_url,
        max_workers: int = 4,
    ):
        self.client = client
        self.caches = caches
        self.photos_url = photos_url
        self.tusur_url = tusur_url
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="timetable-fetch",
        )

    # =========================================================================
    # Faculties
    # =========================================================================

    def get_faculties(self) -> CacheResult:
        def compute() -> List[Dict[str, Any]]:
            page = self.client.get_text(self.client.faculties_url())
            logos = self._pool.submit(self._faculty_logos, page)
            photos = self._pool.submit(self._faculty_photos)
            faculties = parser.parse_faculties(page, logos.result(), photos.result())
            logger.info(f"Parsed {len(faculties)} faculties")
            return [faculty.to_dict() for faculty in faculties]

        return self.caches[CacheType.FACULTIES].fetch(FACULTIES_CACHE_KEY, compute)

    def _faculty_logos(self, page: str) -> Dict[str, str]:
        def compute() -> Dict[str, str]:
            stylesheet = parser.extract_stylesheet_url(page, self.client.base_url)
            if stylesheet is None:
                raise UpstreamError("Stylesheet link not found on faculties page")
            css = self.client.get_text(stylesheet)
            return parser.parse_faculty_logo_urls(css, self.client.base_url)

        return self._side_fetch(CacheType.LOGOS, LOGOS_CACHE_KEY, compute, default={})

    def _faculty_photos(self) -> Dict[str, str]:
        def compute() -> Dict[str, str]:
            page = self.client.get_text(self.photos_url)
            return parser.parse_faculty_photos(page, self.tusur_url)

        return self._side_fetch(CacheType.PHOTOS, PHOTOS_CACHE_KEY, compute, default={})

    # =========================================================================
    # Courses
    # =========================================================================

    def get_courses(self, faculty: str) -> CacheResult:
        def compute() -> List[Dict[str, Any]]:
            page = self.client.get_text(self.client.faculty_url(faculty))
            return [course.to_dict() for course in parser.parse_faculty_courses(page)]

        return self.caches[CacheType.COURSES].fetch(f"courses:{faculty}", compute)

    # =========================================================================
    # Week schedule
    # =========================================================================

    def get_week_schedule(self, faculty: str, group: str, week_start: date) -> CacheResult:
        """
        Schedule for the week containing week_start.

        Any date of a week maps to the same cache slot (its Monday).
        """
        monday = monday_of_week(week_start)

        def compute() -> Dict[str, Any]:
            page = self.client.get_text(
                self.client.group_url(faculty, group),
                params={"week_id": week_id(monday)},
            )
            modals = parser.parse_lesson_modals(page, self.client.base_url)
            schedule = parser.parse_week_schedule(page, monday, modals, self.client.base_url)
            self._hydrate_resource_links(schedule, modals)
            return schedule.to_dict()

        key = schedule_cache_key(faculty, group, monday)
        return self.caches[CacheType.SCHEDULE].fetch(key, compute)

    def _hydrate_resource_links(
        self,
        schedule: WeekSchedule,
        modals: Dict[str, parser.LessonModal],
    ) -> None:
        lessons_by_id = defaultdict(list)
        for day in schedule.days:
            for lesson in day.lessons:
                lessons_by_id[lesson.id].append(lesson)

        lesson_ids_by_url = defaultdict(list)
        for lesson_id, modal in modals.items():
            if modal.course_links_url and lesson_id in lessons_by_id:
                lesson_ids_by_url[modal.course_links_url].append(lesson_id)

        if not lesson_ids_by_url:
            return

        futures = {
            url: self._pool.submit(self._resource_links, url)
            for url in lesson_ids_by_url
        }
        for url, future in futures.items():
            links = future.result()
            if not links:
                continue
            for lesson_id in lesson_ids_by_url[url]:
                for lesson in lessons_by_id[lesson_id]:
                    lesson.resource_links = links

    def _resource_links(self, url: str) -> List[ResourceLink]:
        def compute() -> List[Dict[str, str]]:
            payload = self.client.get_json(url)
            if not isinstance(payload, list):
                raise UpstreamError(f"Unexpected resource links payload from {url}")
            links = parser.parse_resource_links(payload, self.client.base_url)
            return [link.to_dict() for link in links]

        raw = self._side_fetch(CacheType.RESOURCES, f"resources:{url}", compute, default=[])
        return [ResourceLink(**link) for link in raw]

    def _side_fetch(
        self,
        cache_type: CacheType,
        key: str,
        compute: Callable[[], Any],
        default: Any,
    ) -> Any:
        """Optional enrichment: stale value or default instead of an error."""
        try:
            return self.caches[cache_type].fetch(key, compute).value
        except Exception as e:
            logger.warning(f"Skipping {cache_type.value} ({key}): {e}")
            return default

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_expired(self) -> int:
        """Sweep every cache. Returns the number of entries removed."""
        return sum(cache.cleanup_expired() for cache in self.caches.values())

    def start(self) -> None:
        for cache in self.caches.values():
            cache.start()

    def close(self) -> None:
        for cache in self.caches.values():
            cache.close()
        self._pool.shutdown(wait=False)
        self.client.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            cache_type.value: cache.get_stats()
            for cache_type, cache in self.caches.items()
        }
