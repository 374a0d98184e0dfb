"""
Database connection and session management
SQLite by default, any SQLAlchemy URL via DATABASE_URL
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
import logging

from config import settings

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine; SQLite connections are shared across timer threads"""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases live on one connection
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=settings.DEBUG, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,
        echo=settings.DEBUG,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine()
SessionLocal = build_session_factory(engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """One transaction: commit on success, rollback on error"""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Initialize database tables"""
    import models  # noqa: F401  registers tables on Base.metadata

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"[DB] Tables ready on {target.url}")
