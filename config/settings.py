"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Upstream timetable site
    timetable_base_url: str = "https://timetable.tusur.ru"
    tusur_base_url: str = "https://tusur.ru"
    faculty_photos_url: str = (
        "https://tusur.ru/ru/o-tusure/struktura-i-organy-upravleniya/"
        "departament-obrazovaniya/fakultety-i-kafedry"
    )
    request_timeout: float = 30.0
    upstream_retry_attempts: int = 3

    # Persisted fallback store
    database_url: str = "sqlite:///./timetable_cache.db"
    cache_persist_enabled: bool = True

    # TTLs per cache type (seconds)
    cache_ttl_faculties: int = 30 * DAY
    cache_ttl_courses: int = 7 * DAY
    cache_ttl_schedule: int = 1 * DAY
    cache_ttl_logos: int = 30 * DAY
    cache_ttl_photos: int = 30 * DAY
    cache_ttl_resources: int = 1 * DAY

    # Expired entries stay available as stale fallback this long
    cache_stale_grace_seconds: int = 7 * DAY
    cache_sweep_interval_seconds: float = 60 * 60
    cache_sweep_on_read: bool = False
    cache_coalesce_timeout: float = 60.0

    # Shared secret for /api/cron/* (unset = open)
    cron_secret: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
