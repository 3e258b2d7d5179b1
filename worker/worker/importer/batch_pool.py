"""
Batch Worker Pool - runs drafts through the persistence unit in parallel
batches with bounded concurrency.
"""

import math
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from ..config import settings
from .errors import FailureKind, FatalDatabaseError, RowOutcome
from .records import BatchReport, BatchResult, DraftResult, ElementTypeDraft

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 30
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 50

DEFAULT_CONCURRENCY = 15
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 20


def clamp_tuning(batch_size: Optional[int] = None, concurrency: Optional[int] = None) -> Tuple[int, int]:
    """Apply defaults and clamp batch size and concurrency into their allowed ranges."""
    batch_size = DEFAULT_BATCH_SIZE if batch_size is None else batch_size
    concurrency = DEFAULT_CONCURRENCY if concurrency is None else concurrency
    return (
        min(max(batch_size, MIN_BATCH_SIZE), MAX_BATCH_SIZE),
        min(max(concurrency, MIN_CONCURRENCY), MAX_CONCURRENCY),
    )


def partition(drafts: Sequence, batch_size: int) -> List[list]:
    """Contiguous batches of ``batch_size``; only the last one may be shorter."""
    return [list(drafts[start:start + batch_size]) for start in range(0, len(drafts), batch_size)]


def batch_count(total: int, batch_size: int) -> int:
    return math.ceil(total / batch_size) if total else 0


def effective_concurrency(total: int, requested: int, threshold: Optional[int] = None,
                          cap: Optional[int] = None) -> int:
    """Large imports run with fewer simultaneous transactions."""
    threshold = settings.throttle_threshold if threshold is None else threshold
    cap = settings.throttle_concurrency if cap is None else cap
    if total > threshold:
        return min(requested, cap)
    return requested


class BatchWorkerPool:
    """
    Dispatches batches to a thread pool behind a counting semaphore.

    Each worker walks its batch sequentially and reports every draft
    through ``on_result``; ``on_batch`` runs when a batch finishes, before
    its slot is released. A fatal database error stops dispatch of new
    batches; the pool still joins every worker before it re-raises.
    """

    def __init__(self, persist: Callable[..., DraftResult],
                 on_result: Optional[Callable[[DraftResult], None]] = None,
                 on_batch: Optional[Callable[[BatchResult], None]] = None,
                 job_id=None, throttle_threshold: Optional[int] = None,
                 throttle_concurrency: Optional[int] = None):
        self.persist = persist
        self.on_result = on_result
        self.on_batch = on_batch
        self.job_id = job_id
        self.throttle_threshold = throttle_threshold
        self.throttle_concurrency = throttle_concurrency

        self._active = 0
        self._active_lock = threading.Lock()
        self._fatal: Optional[FatalDatabaseError] = None

    def process(self, drafts: Sequence[ElementTypeDraft], batch_size: Optional[int] = None,
                max_concurrency: Optional[int] = None, token=None) -> BatchReport:
        batch_size, requested = clamp_tuning(batch_size, max_concurrency)
        concurrency = effective_concurrency(
            len(drafts), requested, self.throttle_threshold, self.throttle_concurrency
        )
        if concurrency < requested:
            logger.info(
                "Adaptive throttling applied",
                job_id=str(self.job_id),
                total_drafts=len(drafts),
                requested_concurrency=requested,
                effective_concurrency=concurrency
            )

        batches = partition(drafts, batch_size)
        report = BatchReport(
            total_drafts=len(drafts),
            batch_size=batch_size,
            requested_concurrency=requested,
            effective_concurrency=concurrency
        )
        self._active = 0
        self._fatal = None

        results: "queue.Queue[BatchResult]" = queue.Queue()
        slots = threading.BoundedSemaphore(concurrency)

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="import-batch") as executor:
            for batch_number, batch in enumerate(batches, start=1):
                slots.acquire()
                if (token is not None and token.is_cancelled(force=True)) or self._fatal is not None:
                    slots.release()
                    logger.info(
                        "Batch dispatch stopped",
                        job_id=str(self.job_id),
                        next_batch=batch_number,
                        total_batches=len(batches),
                        reason="fatal_error" if self._fatal is not None else "cancelled"
                    )
                    break
                report.batches_dispatched += 1
                executor.submit(self._run_batch, batch_number, batch, token, slots, results, report)

        while not results.empty():
            report.batches.append(results.get_nowait())
        report.batches.sort(key=lambda batch: batch.batch_number)
        report.cancelled = token is not None and token.is_cancelled(force=True)

        if self._fatal is not None:
            raise self._fatal
        return report

    def _run_batch(self, batch_number: int, batch: List[ElementTypeDraft], token,
                   slots: threading.BoundedSemaphore, results: queue.Queue, report: BatchReport):
        start_time = time.time()
        batch_result = BatchResult(batch_number=batch_number, duration_ms=0, successes=0, failures=0)

        with self._active_lock:
            self._active += 1
            report.peak_concurrency = max(report.peak_concurrency, self._active)

        try:
            for index, draft in enumerate(batch):
                if self._fatal is not None:
                    batch_result.skipped += len(batch) - index
                    break
                result = self._persist_one(draft, token)
                if result is None:
                    batch_result.skipped += len(batch) - index
                    break
                if result.outcome == RowOutcome.SKIPPED:
                    batch_result.skipped += len(batch) - index
                    break
                batch_result.results.append(result)
                if result.outcome == RowOutcome.SUCCEEDED:
                    batch_result.successes += 1
                else:
                    batch_result.failures += 1
                if self.on_result is not None:
                    self.on_result(result)
        finally:
            with self._active_lock:
                self._active -= 1
            batch_result.duration_ms = int((time.time() - start_time) * 1000)
            results.put(batch_result)
            try:
                if self.on_batch is not None:
                    self.on_batch(batch_result)
            finally:
                slots.release()

            logger.info(
                "Batch completed",
                job_id=str(self.job_id),
                batch_number=batch_number,
                drafts=len(batch),
                successes=batch_result.successes,
                failures=batch_result.failures,
                skipped=batch_result.skipped,
                duration_ms=batch_result.duration_ms
            )

    def _persist_one(self, draft: ElementTypeDraft, token) -> Optional[DraftResult]:
        """Persist a draft; None means the database is gone and the batch must stop."""
        try:
            return self.persist(draft, token)
        except FatalDatabaseError as e:
            with self._active_lock:
                if self._fatal is None:
                    self._fatal = e
            logger.error(
                "Fatal database error, stopping import",
                job_id=str(self.job_id),
                row_number=draft.row_number,
                error=str(e)
            )
            return None
        except Exception as e:
            logger.error(
                "Unexpected error persisting draft",
                job_id=str(self.job_id),
                row_number=draft.row_number,
                error=str(e)
            )
            return DraftResult(
                row_number=draft.row_number,
                outcome=RowOutcome.FAILED,
                failure_kind=FailureKind.DATABASE_ERROR,
                error=f"row {draft.row_number}: {FailureKind.DATABASE_ERROR.value}: {e}"
            )
