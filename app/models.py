"""
Database models for the persisted cache tier
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC now, the storage format of DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CacheRecord(Base):
    """
    One cached upstream value, keyed like the in-memory cache.
    Rows outlive process restarts so stale values stay available as fallback.
    """
    __tablename__ = "cache"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)
    type = Column(String, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<CacheRecord(key='{self.key}', type='{self.type}', expires_at={self.expires_at})>"
