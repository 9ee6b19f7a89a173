"""
Database configuration with SQLAlchemy for PostgreSQL (Supabase).
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

SQLALCHEMY_DATABASE_URL = settings.database_url


def _engine_options(url: str) -> dict:
    """Engine options per dialect."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": 5,
        "max_overflow": 10,
        # Tables live in the datamart schemas, not in public
        "connect_args": {"options": f"-csearch_path={settings.database_search_path}"},
    }


# One pooled engine per process. Reads are never cached: every request
# opens a fresh session and queries the store directly.
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    echo=settings.debug,
    **_engine_options(SQLALCHEMY_DATABASE_URL),
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base for models
Base = declarative_base()


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables. Only used for local development databases."""
    from . import models  # Import to register models
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
