"""
Database connection and setup
SQLAlchemy engine for the persisted cache table
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.models import Base
from config.settings import settings

logger = logging.getLogger("db")

DATABASE_URL = settings.database_url

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=_connect_args,  # Needed for SQLite across request threads
    pool_pre_ping=True,
    echo=False,
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"Database initialized at: {(bind or engine).url}")
