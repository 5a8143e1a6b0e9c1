"""
Database engine and session handling.
"""
import logging
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections are shared across request threads."""
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    return create_engine(database_url, **kwargs)


@lru_cache()
def get_engine() -> Engine:
    """Get the process-wide engine."""
    settings = get_settings()
    logger.info("Database engine: %s", settings.database_url.split("://")[0])
    return make_engine(settings.database_url)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    from . import tables  # noqa: F401  registers the mappings on Base

    Base.metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> tuple[bool, Optional[str]]:
    """
    Check the database answers a trivial query.

    Returns:
        Tuple of (is_healthy, error_message)
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return (True, None)
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return (False, str(e))
