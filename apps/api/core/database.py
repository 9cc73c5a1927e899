"""
Database connection management.

A single local SQLite file backs settings, the workout log and the message
log. In-memory URLs share one connection so every session sees the same data.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL


def build_engine(url: str):
    """Create an engine for the given URL."""
    kwargs = {"echo": settings.DEBUG, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Prevent lazy loading issues
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def log_new_connection(dbapi_conn, connection_record):
    """Connection pool hook."""
    logger.debug("New database connection established")


def init_db(bind=None) -> None:
    """Create tables that don't exist yet."""
    # models must be imported so their tables register on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def check_db_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
