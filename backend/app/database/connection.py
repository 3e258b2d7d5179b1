"""
Database engine and request-scoped sessions for the API.

Import jobs are written here only at submission and cancellation; the
worker owns its own pool for the heavy lifting.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
import os
from typing import Generator
import structlog

from ..config import settings

logger = structlog.get_logger()

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_recycle=300,
    echo=os.getenv("SQL_ECHO", "false").lower() == "true"
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def ping_database(db: Session) -> bool:
    """True when a trivial query round-trips."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning("Database ping failed", error=str(getattr(e, "orig", e)))
        return False
