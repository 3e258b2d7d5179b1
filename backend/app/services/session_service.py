"""
Session service resolving the authenticated caller from a session handle.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..database.connection import get_db
from ..models.database_models import User, UserSession

logger = structlog.get_logger()


@dataclass
class CallerContext:
    session_id: str
    user_id: int
    user_name: str
    host_name: Optional[str] = None
    ip_address: Optional[str] = None
    email: Optional[str] = None


class SessionService:
    """Looks up sessions; validation rules live with the session owner."""

    def resolve(self, db: Session, session_id: str) -> Optional[CallerContext]:
        row = db.query(UserSession, User).join(
            User, User.id == UserSession.user_id
        ).filter(UserSession.session_id == session_id).first()
        if row is None:
            return None

        user_session, user = row
        expires_at = user_session.expires_at
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at < datetime.now(timezone.utc):
                return None

        user_name = " ".join(part for part in (user.first_name, user.last_name) if part)
        return CallerContext(
            session_id=session_id,
            user_id=user.id,
            user_name=user_name or (user.email or str(user.id)),
            host_name=user_session.host_name,
            ip_address=user_session.ip_address,
            email=user.email
        )


session_service = SessionService()


def extract_session_handle(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    handle = header_value.strip()
    if handle.lower().startswith("bearer "):
        handle = handle[7:].strip()
    return handle or None


def get_caller(request: Request, db: Session = Depends(get_db)) -> CallerContext:
    """Dependency returning the caller or failing with 401."""
    handle = extract_session_handle(request.headers.get(settings.session_header))
    if handle is None:
        raise HTTPException(status_code=401, detail="Missing session handle")

    caller = session_service.resolve(db, handle)
    if caller is None:
        logger.info("Rejected session handle", path=request.url.path)
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return caller
