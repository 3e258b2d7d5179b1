"""
Database engine and session factory for the worker process.

The pool is shared by every import running in this process; workers check
a connection out per draft transaction and hand it back straight away.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import settings


@lru_cache(maxsize=None)
def get_engine() -> Engine:
    """Create the process-wide engine on first use."""
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
    )


@lru_cache(maxsize=None)
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
