"""
Timetable Mini-App - Main FastAPI Application
Faculties, courses and week schedules served through the coalescing cache
"""
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from app.cache import CacheResult, CacheType, PersistentCacheStore, cache_control_for
from app.schemas import CleanupResult
from app.timetable import TimetableClient, TimetableService, build_caches
from app.timetable.weeks import format_date_param, monday_of_week, parse_date_param
from config.settings import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("api")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Timetable Mini-App"


def create_service() -> TimetableService:
    """Build the service with the persisted tier when enabled."""
    store = None
    if settings.cache_persist_enabled:
        from app.db import SessionLocal, init_db
        init_db()
        store = PersistentCacheStore(SessionLocal)
    return TimetableService(TimetableClient(), build_caches(store))


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = create_service()
    service.start()
    app.state.timetable = service
    logger.info("Timetable service started")
    try:
        yield
    finally:
        service.close()
        logger.info("Timetable service stopped")


app = FastAPI(
    title=APP_NAME,
    description="Class schedules from the university timetable, cached with stale fallback",
    version=APP_VERSION,
    lifespan=lifespan,
)


def get_timetable_service(request: Request) -> TimetableService:
    """FastAPI dependency: the service built at startup."""
    return request.app.state.timetable


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _cached_response(
    content: dict,
    result: CacheResult,
    cache_type: CacheType,
) -> JSONResponse:
    return JSONResponse(
        content,
        headers={
            "Cache-Control": cache_control_for(cache_type, result.is_stale),
            "X-Cache": result.x_cache,
        },
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(service: TimetableService = Depends(get_timetable_service)):
    """Get cache statistics."""
    return service.get_stats()


# =============================================================================
# TIMETABLE API
# =============================================================================

@app.get("/api/faculties")
def list_faculties(service: TimetableService = Depends(get_timetable_service)):
    """All faculties with their images."""
    try:
        result = service.get_faculties()
    except Exception as e:
        logger.error(f"Failed to load faculties: {e}")
        return _error("Failed to load faculties", 502)

    return _cached_response({"faculties": result.value}, result, CacheType.FACULTIES)


@app.get("/api/faculties/{faculty}/courses")
def list_courses(
    faculty: str,
    service: TimetableService = Depends(get_timetable_service),
):
    """Courses of a faculty with their groups."""
    try:
        result = service.get_courses(faculty)
    except Exception as e:
        logger.error(f"Failed to load courses for {faculty}: {e}")
        return _error("Failed to load courses", 502)

    return _cached_response({"courses": result.value}, result, CacheType.COURSES)


@app.get("/api/timetable")
def week_timetable(
    faculty: Optional[str] = Query(None, description="Faculty slug"),
    group: Optional[str] = Query(None, description="Group slug"),
    week_start: Optional[str] = Query(None, alias="weekStart", description="Any date of the week, YYYY-MM-DD"),
    service: TimetableService = Depends(get_timetable_service),
):
    """
    Week schedule for a group.

    weekStart is normalized to its Monday, so every day of a week shares
    one cache slot. X-Cache tells HIT / MISS / SHARED / STALE apart.
    """
    if not faculty or not group:
        return _error("Missing faculty or group", 400)

    parsed = parse_date_param(week_start)
    if parsed is None:
        return _error("Invalid weekStart", 400)

    monday = monday_of_week(parsed)
    try:
        result = service.get_week_schedule(faculty, group, monday)
    except Exception as e:
        logger.error(f"Failed to load timetable {faculty}/{group}: {e}")
        return _error("Failed to load timetable", 502)

    payload = {
        "weekType": result.value["weekType"],
        "days": result.value["days"],
        "weekStart": format_date_param(monday),
        "isStale": result.is_stale,
    }
    return _cached_response(payload, result, CacheType.SCHEDULE)


# =============================================================================
# CRON
# =============================================================================

def _matches(given: Optional[str], expected: str) -> bool:
    # Bytes: compare_digest rejects non-ASCII str
    return bool(given) and secrets.compare_digest(given.encode(), expected.encode())


def _cron_authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    expected = settings.cron_secret
    if not expected:
        return True
    return _matches(authorization, f"Bearer {expected}") or _matches(secret, expected)


@app.get("/api/cron/cleanup-cache")
def cleanup_cache(
    authorization: Optional[str] = Header(None),
    secret: Optional[str] = Query(None),
    service: TimetableService = Depends(get_timetable_service),
):
    """Sweep entries past their grace window from every cache tier."""
    if not _cron_authorized(authorization, secret):
        return _error("Unauthorized", 401)

    try:
        deleted = service.cleanup_expired()
    except Exception as e:
        logger.error(f"Failed to cleanup cache: {e}")
        return _error("Failed to cleanup cache", 500)

    return CleanupResult(ok=True, deleted=deleted)
