"""
Tests for the timetable API routes and their caching headers.
"""
import pytest
from fastapi.testclient import TestClient

from app.main import app, get_timetable_service
from app.timetable import TimetableService, build_caches
from config.settings import settings
from conftest import (
    BASE_URL,
    COURSES_HTML,
    FACULTIES_CSS,
    FACULTIES_HTML,
    PHOTOS_HTML,
    SCHEDULE_HTML,
    FakeTimetableClient,
)

client = TestClient(app)

DAY = 24 * 60 * 60


@pytest.fixture
def upstream(photos_url):
    return FakeTimetableClient(
        pages={
            f"{BASE_URL}/faculties": FACULTIES_HTML,
            f"{BASE_URL}/assets/application-abc123.css": FACULTIES_CSS,
            photos_url: PHOTOS_HTML,
            f"{BASE_URL}/faculties/fsu": COURSES_HTML,
            f"{BASE_URL}/faculties/fsu/groups/440-1": SCHEDULE_HTML,
        },
    )


@pytest.fixture
def service(upstream, clock, photos_url):
    service = TimetableService(upstream, build_caches(clock=clock), photos_url=photos_url)
    app.dependency_overrides[get_timetable_service] = lambda: service
    yield service
    app.dependency_overrides.clear()
    service.close()


def test_faculties_miss_then_hit(service):
    first = client.get("/api/faculties")
    second = client.get("/api/faculties")

    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert second.headers["Cache-Control"] == (
        f"public, max-age=0, s-maxage={30 * DAY}, stale-while-revalidate={30 * DAY}"
    )
    assert [faculty["slug"] for faculty in second.json()["faculties"]] == ["fsu", "rtf", "gf"]


def test_courses(service):
    response = client.get("/api/faculties/fsu/courses")

    assert response.status_code == 200
    assert [course["name"] for course in response.json()["courses"]] == ["1 курс", "2 курс"]


def test_courses_served_stale_when_upstream_is_down(service, upstream, clock):
    client.get("/api/faculties/fsu/courses")
    clock.advance(7 * DAY + 1)
    upstream.down = True

    response = client.get("/api/faculties/fsu/courses")

    assert response.status_code == 200
    assert response.headers["X-Cache"] == "STALE"
    assert response.headers["Cache-Control"] == "no-store"
    assert len(response.json()["courses"]) == 2


def test_upstream_failure_without_cache_is_502(service, upstream):
    upstream.down = True

    response = client.get("/api/faculties/fsu/courses")

    assert response.status_code == 502
    assert response.json() == {"error": "Failed to load courses"}


def test_timetable_normalizes_week_start(service):
    response = client.get(
        "/api/timetable",
        params={"faculty": "fsu", "group": "440-1", "weekStart": "2025-09-11"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["weekStart"] == "2025-09-08"
    assert data["weekType"] == "even"
    assert data["isStale"] is False
    assert len(data["days"]) == 7
    assert response.headers["Cache-Control"] == (
        "public, max-age=0, s-maxage=3600, stale-while-revalidate=3600"
    )


def test_timetable_stale_flag(service, upstream, clock):
    params = {"faculty": "fsu", "group": "440-1", "weekStart": "2025-09-08"}
    client.get("/api/timetable", params=params)
    clock.advance(DAY)
    upstream.down = True

    response = client.get("/api/timetable", params=params)

    assert response.status_code == 200
    assert response.json()["isStale"] is True
    assert response.headers["X-Cache"] == "STALE"


@pytest.mark.parametrize("params, error", [
    ({"group": "440-1", "weekStart": "2025-09-08"}, "Missing faculty or group"),
    ({"faculty": "fsu", "weekStart": "2025-09-08"}, "Missing faculty or group"),
    ({"faculty": "fsu", "group": "440-1"}, "Invalid weekStart"),
    ({"faculty": "fsu", "group": "440-1", "weekStart": "08.09.2025"}, "Invalid weekStart"),
])
def test_timetable_bad_request(service, params, error):
    response = client.get("/api/timetable", params=params)

    assert response.status_code == 400
    assert response.json() == {"error": error}


def test_timetable_unknown_group_is_502(service):
    response = client.get(
        "/api/timetable",
        params={"faculty": "fsu", "group": "999-9", "weekStart": "2025-09-08"},
    )

    assert response.status_code == 502


def test_cache_stats(service):
    client.get("/api/faculties/fsu/courses")

    stats = client.get("/cache/stats").json()

    assert stats["courses"]["misses"] == 1
    assert stats["courses"]["coalescer"]["active_requests"] == 0


# =============================================================================
# Cron cleanup
# =============================================================================

def test_cleanup_requires_secret(service, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    assert client.get("/api/cron/cleanup-cache").status_code == 401
    assert client.get(
        "/api/cron/cleanup-cache", headers={"Authorization": "Bearer wrong"}
    ).status_code == 401

    by_header = client.get(
        "/api/cron/cleanup-cache", headers={"Authorization": "Bearer s3cret"}
    )
    by_query = client.get("/api/cron/cleanup-cache", params={"secret": "s3cret"})

    assert by_header.status_code == 200
    assert by_query.json() == {"ok": True, "deleted": 0}


def test_cleanup_rejects_non_ascii_secret(service, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    by_query = client.get("/api/cron/cleanup-cache", params={"secret": "пароль"})
    by_header = client.get(
        "/api/cron/cleanup-cache",
        headers={"Authorization": "Bearer пароль".encode("utf-8")},
    )

    assert by_query.status_code == 401
    assert by_header.status_code == 401


def test_cleanup_removes_entries_past_grace(service, clock, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)
    client.get("/api/faculties/fsu/courses")
    clock.advance(7 * DAY + settings.cache_stale_grace_seconds + 1)

    response = client.get("/api/cron/cleanup-cache")

    assert response.json() == {"ok": True, "deleted": 1}
