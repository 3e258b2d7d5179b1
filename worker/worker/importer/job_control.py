"""
Worker-side job control: cancellation tokens, the process-wide job registry
and the progress tracker that mirrors counters into ``import_jobs``.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..database_models import ImportJob
from .errors import InvalidRow, RowOutcome
from .persistence import transaction_scope
from .records import DraftResult

logger = structlog.get_logger()

CANCEL_KEY_PREFIX = "import:cancel:"


def cancel_key(job_id) -> str:
    """Redis key the API sets to ask a running import to stop."""
    return f"{CANCEL_KEY_PREFIX}{job_id}"


def redis_cancel_probe(redis_client, job_id) -> Callable[[], bool]:
    key = cancel_key(job_id)

    def probe() -> bool:
        return bool(redis_client.exists(key))

    return probe


class CancellationToken:
    """
    Cooperative cancellation flag shared by the batch pool and persistence.

    An optional ``probe`` lets another process request cancellation (the API
    writes a Redis key); unforced checks consult it at most once per
    ``poll_interval``.
    """

    def __init__(self, probe: Optional[Callable[[], bool]] = None, poll_interval: Optional[float] = None):
        self._event = threading.Event()
        self._probe = probe
        self._poll_interval = settings.cancel_poll_interval if poll_interval is None else poll_interval
        self._last_poll = 0.0
        self._lock = threading.Lock()

    def cancel(self):
        self._event.set()

    def is_cancelled(self, force: bool = False) -> bool:
        """
        ``force`` skips the poll interval; the batch pool uses it before every
        dispatch so no batch is admitted on a stale answer.
        """
        if self._event.is_set():
            return True
        if self._probe is None:
            return False

        now = time.monotonic()
        with self._lock:
            if not force and now - self._last_poll < self._poll_interval:
                return False
            self._last_poll = now

        try:
            if self._probe():
                self._event.set()
        except Exception as e:
            logger.warning("Cancellation probe failed", error=str(e))
        return self._event.is_set()


class JobRegistry:
    """Maps running job ids to their cancellation tokens, behind one mutex."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[str, CancellationToken] = {}

    def register(self, job_id, token: CancellationToken):
        with self._lock:
            self._tokens[str(job_id)] = token

    def deregister(self, job_id):
        with self._lock:
            self._tokens.pop(str(job_id), None)

    def get(self, job_id) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(str(job_id))

    def cancel(self, job_id) -> bool:
        """Signal a registered job; False when this process is not running it."""
        with self._lock:
            token = self._tokens.get(str(job_id))
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> int:
        with self._lock:
            tokens = list(self._tokens.values())
        for token in tokens:
            token.cancel()
        return len(tokens)

    def active_jobs(self) -> List[str]:
        with self._lock:
            return list(self._tokens.keys())


# Process-wide registry used by the job processor and the worker's signal handler
job_registry = JobRegistry()


class ErrorSummary:
    """Distinct messages in arrival order, capped at ``limit``."""

    def __init__(self, limit: int):
        self.limit = limit
        self.messages: List[str] = []
        self._seen = set()

    def add(self, message: str):
        if message in self._seen or len(self.messages) >= self.limit:
            return
        self._seen.add(message)
        self.messages.append(message)


class ProgressTracker:
    """
    Single logical counter for a job.

    ``processed = succeeded + failed`` holds for every snapshot because all
    three move together under one lock. Database flushes are serialized and
    read the counters while holding the flush lock, so stored values never
    go backwards.
    """

    def __init__(self, job_id, session_factory: Callable[[], Session],
                 flush_interval: Optional[float] = None, error_limit: Optional[int] = None):
        self.job_id = job_id
        self.session_factory = session_factory
        self.flush_interval = settings.progress_flush_interval if flush_interval is None else flush_interval
        limit = settings.error_summary_limit if error_limit is None else error_limit

        self.total = 0
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.errors = ErrorSummary(limit)
        self.warnings = ErrorSummary(limit)
        self.failure_kinds: Dict[str, int] = {}

        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._last_flush = 0.0

    def set_total(self, total: int):
        with self._lock:
            self.total = total
        self.flush(force=True)

    def record_parse_failure(self, error: InvalidRow):
        with self._lock:
            self.processed += 1
            self.failed += 1
            self.errors.add(error.summary())
            self.failure_kinds["parse_error"] = self.failure_kinds.get("parse_error", 0) + 1

    def add_error(self, message: str):
        with self._lock:
            self.errors.add(message)

    def record(self, result: DraftResult):
        if result.outcome == RowOutcome.SKIPPED:
            return
        with self._lock:
            self.processed += 1
            if result.outcome == RowOutcome.SUCCEEDED:
                self.succeeded += 1
            else:
                self.failed += 1
                if result.error:
                    self.errors.add(result.error)
                if result.failure_kind is not None:
                    kind = result.failure_kind.value
                    self.failure_kinds[kind] = self.failure_kinds.get(kind, 0) + 1
            for warning in result.warnings:
                self.warnings.add(warning)
        self.flush()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total": self.total,
                "processed": self.processed,
                "succeeded": self.succeeded,
                "failed": self.failed,
                "errors": list(self.errors.messages),
                "warnings": list(self.warnings.messages),
                "failure_kinds": dict(self.failure_kinds),
            }

    def error_document(self, snapshot: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        snapshot = snapshot or self.snapshot()
        return {
            "errors": snapshot["errors"],
            "warnings": snapshot["warnings"],
            "failure_kinds": snapshot["failure_kinds"],
        }

    def flush(self, force: bool = False, **fields) -> bool:
        """
        Write counters (and any extra ``import_jobs`` columns) to the database.

        Periodic flushes are best effort and only log failures; forced
        flushes raise so the caller can react.
        """
        if not force and time.monotonic() - self._last_flush < self.flush_interval:
            return False
        return self._write(fields, raise_errors=force)

    def batch_completed(self, batch_result=None) -> bool:
        """Flush after every finished batch regardless of the interval; failures are only logged."""
        return self._write({}, raise_errors=False)

    def _write(self, fields: Dict[str, Any], raise_errors: bool) -> bool:
        with self._flush_lock:
            snapshot = self.snapshot()
            values = {
                "total": snapshot["total"],
                "processed": snapshot["processed"],
                "succeeded": snapshot["succeeded"],
                "failed": snapshot["failed"],
                "error_summary_json": self.error_document(snapshot),
            }
            values.update(fields)
            try:
                with transaction_scope(self.session_factory) as db:
                    db.query(ImportJob).filter(ImportJob.id == self.job_id).update(
                        values, synchronize_session=False
                    )
                self._last_flush = time.monotonic()
            except Exception as e:
                logger.error(
                    "Failed to flush import progress",
                    job_id=str(self.job_id),
                    error=str(e)
                )
                if raise_errors:
                    raise
                return False
        return True
