"""
Activity log service: a bounded queue of audit entries drained into
``activity_logs`` by one background thread.

Request handlers only enqueue; a full queue or a failed insert is logged and
never reaches the caller.
"""

import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..models.database_models import ActivityLog

logger = structlog.get_logger()

_STOP = object()


@dataclass
class ActivityEntry:
    event_context: str
    event_name: str
    description: str
    user_name: Optional[str] = None
    host_name: Optional[str] = None
    ip_address: Optional[str] = None
    project_id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ActivityLogService:
    """Bounded queue plus a single drain thread."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None,
                 maxsize: Optional[int] = None):
        self._session_factory = session_factory
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize or settings.activity_log_queue_size)
        self._thread: Optional[threading.Thread] = None
        self.dropped = 0

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from ..database.connection import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory

    def record(self, entry: ActivityEntry) -> bool:
        try:
            self._queue.put_nowait(entry)
            return True
        except queue.Full:
            self.dropped += 1
            logger.warning(
                "Activity log queue full, entry dropped",
                event_name=entry.event_name,
                project_id=entry.project_id,
                dropped=self.dropped
            )
            return False

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="activity-log-writer", daemon=True)
        self._thread.start()
        logger.info("Activity log writer started")

    def stop(self, timeout: float = 5.0):
        if self._thread is None:
            return
        # Blocking put: the writer is still draining, so room will appear
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        logger.info("Activity log writer stopped")

    def drain(self) -> int:
        """Write everything queued so far on the calling thread."""
        written = 0
        while True:
            try:
                entry = self._queue.get_nowait()
            except queue.Empty:
                return written
            if entry is _STOP:
                continue
            if self._write(entry):
                written += 1

    def _run(self):
        while True:
            entry = self._queue.get()
            if entry is _STOP:
                return
            self._write(entry)

    def _write(self, entry: ActivityEntry) -> bool:
        db = self.session_factory()
        try:
            db.add(ActivityLog(
                created_at=entry.created_at,
                user_name=entry.user_name,
                host_name=entry.host_name,
                event_context=entry.event_context,
                ip_address=entry.ip_address,
                description=entry.description,
                event_name=entry.event_name,
                project_id=entry.project_id
            ))
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.error(
                "Failed to persist activity log",
                event_name=entry.event_name,
                project_id=entry.project_id,
                error=str(e)
            )
            return False
        finally:
            db.close()


# Global activity log service instance
activity_log_service = ActivityLogService()
