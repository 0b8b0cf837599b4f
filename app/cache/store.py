"""
Persisted fallback tier for the cache.

Rows survive process restarts, so a cold process can still serve the last
known value when the upstream is down. Every operation is best-effort:
failures are logged and reported as a miss (reads) or ignored (writes).
The in-memory tier stays authoritative and works without this store.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import CacheRecord, utcnow
from .core import CacheEntry

logger = logging.getLogger("cache.store")

# Database failures plus out-of-range timestamps from the datetime conversions
STORE_ERRORS = (SQLAlchemyError, ValueError, OverflowError, OSError)


def _to_datetime(timestamp: float) -> datetime:
    """Epoch seconds -> naive UTC datetime (column storage format)."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


def _to_timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class PersistentCacheStore:
    """
    SQLAlchemy-backed key/value table (`key`, `value`, `type`, `expires_at`).

    Args:
        session_factory: Callable returning a new Session (e.g. SessionLocal)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def read(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for key (fresh or not), or None."""
        try:
            with self._session() as session:
                record = session.get(CacheRecord, key)
                if record is None:
                    return None
                return CacheEntry(
                    value=record.value,
                    expires_at=_to_timestamp(record.expires_at),
                )
        except STORE_ERRORS as e:
            logger.warning(f"Failed to read cache entry {key}: {e}")
            return None

    def write(self, key: str, value: Any, expires_at: float, cache_type: str) -> None:
        """Upsert an entry. Never raises on database errors."""
        try:
            with self._session() as session:
                session.merge(
                    CacheRecord(
                        key=key,
                        value=value,
                        type=cache_type,
                        expires_at=_to_datetime(expires_at),
                        updated_at=utcnow(),
                    )
                )
        except STORE_ERRORS as e:
            logger.error(f"Failed to write cache entry {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            with self._session() as session:
                session.execute(delete(CacheRecord).where(CacheRecord.key == key))
        except STORE_ERRORS as e:
            logger.error(f"Failed to delete cache entry {key}: {e}")

    def delete_by_type(self, cache_type: str) -> int:
        """Delete every row of a cache type. Returns rows removed."""
        try:
            with self._session() as session:
                result = session.execute(
                    delete(CacheRecord).where(CacheRecord.type == cache_type)
                )
                return result.rowcount or 0
        except STORE_ERRORS as e:
            logger.error(f"Failed to delete cache entries of type {cache_type}: {e}")
            return 0

    def delete_expired(self, before: float, cache_type: Optional[str] = None) -> int:
        """
        Delete rows that expired before the given timestamp.

        Args:
            before: Epoch seconds; rows with expires_at < before are removed
            cache_type: Restrict the sweep to one cache type

        Returns:
            Number of rows removed
        """
        try:
            statement = delete(CacheRecord).where(CacheRecord.expires_at < _to_datetime(before))
            if cache_type is not None:
                statement = statement.where(CacheRecord.type == cache_type)
            with self._session() as session:
                result = session.execute(statement)
                return result.rowcount or 0
        except STORE_ERRORS as e:
            logger.error(f"Failed to cleanup expired cache entries: {e}")
            return 0
