"""
Job processor for executing element-type imports.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .config import settings
from .database import get_session_factory
from .database_models import ImportJob
from .importer.batch_pool import BatchWorkerPool
from .importer.errors import (
    FailureKind, FatalDatabaseError, ImportCancelled, InvalidRow, JobState, ReferenceCategory,
    StagedFileError
)
from .importer.job_control import (
    CancellationToken, JobRegistry, ProgressTracker, job_registry, redis_cancel_probe
)
from .importer.layout import ColumnLayout
from .importer.persistence import PersistenceUnit, transaction_scope
from .importer.records import ElementTypeDraft
from .importer.reference_resolver import ReferenceResolver
from .importer.row_assembler import RowAssembler
from .importer.tabular_reader import TabularReader
from .services.metrics_service import metrics_service

logger = structlog.get_logger()


@dataclass
class ClaimedJob:
    id: uuid.UUID
    project_id: int
    file_path: str
    batch_size: int
    concurrent_batches: int
    created_by: Optional[str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportJobRunner:
    """
    Runs one import job from claim to terminal state.

    The job moves ``pending -> running`` through a conditional update, so
    only one executor ever runs it; a job cancelled while still pending is
    never claimed.
    """

    def __init__(self, job_id: uuid.UUID, session_factory: Callable[[], Session],
                 cancel_probe: Optional[Callable[[], bool]] = None,
                 registry: JobRegistry = job_registry):
        self.job_id = job_id
        self.session_factory = session_factory
        self.cancel_probe = cancel_probe
        self.registry = registry

    def run(self) -> Dict[str, Any]:
        job = self._claim()
        if job is None:
            logger.info("Import job not claimed", job_id=str(self.job_id))
            return {"job_id": str(self.job_id), "claimed": False}

        logger.info(
            "Import job started",
            job_id=str(self.job_id),
            project_id=job.project_id,
            file_path=job.file_path,
            batch_size=job.batch_size,
            concurrent_batches=job.concurrent_batches
        )

        token = CancellationToken(probe=self.cancel_probe)
        tracker = ProgressTracker(self.job_id, self.session_factory)
        self.registry.register(self.job_id, token)
        start_time = time.time()

        try:
            state = self._execute(job, token, tracker)
        except ImportCancelled:
            state = JobState.CANCELLED
        except (StagedFileError, FatalDatabaseError) as e:
            state = self._fail(tracker, e)
        except SQLAlchemyError as e:
            state = self._fail(tracker, FatalDatabaseError(str(e)))
        except Exception as e:
            self._fail(tracker, e)
            raise
        finally:
            self.registry.deregister(self.job_id)

        snapshot = tracker.snapshot()
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Import job finished",
            job_id=str(self.job_id),
            state=state.value,
            total=snapshot["total"],
            processed=snapshot["processed"],
            succeeded=snapshot["succeeded"],
            failed=snapshot["failed"],
            duration_ms=duration_ms
        )
        return {
            "job_id": str(self.job_id),
            "claimed": True,
            "state": state.value,
            "total": snapshot["total"],
            "processed": snapshot["processed"],
            "succeeded": snapshot["succeeded"],
            "failed": snapshot["failed"],
        }

    def _claim(self) -> Optional[ClaimedJob]:
        with transaction_scope(self.session_factory) as db:
            claimed = db.query(ImportJob).filter(
                ImportJob.id == self.job_id,
                ImportJob.state == JobState.PENDING.value
            ).update(
                {"state": JobState.RUNNING.value, "started_at": _utcnow()},
                synchronize_session=False
            )
            if claimed != 1:
                return None
            job = db.query(ImportJob).filter(ImportJob.id == self.job_id).one()
            return ClaimedJob(
                id=job.id,
                project_id=job.project_id,
                file_path=job.file_path,
                batch_size=job.batch_size,
                concurrent_batches=job.concurrent_batches,
                created_by=job.created_by
            )

    def _execute(self, job: ClaimedJob, token: CancellationToken, tracker: ProgressTracker) -> JobState:
        resolver = ReferenceResolver(job.project_id, self.session_factory)
        counts = resolver.counts()
        layout = ColumnLayout(
            stage_count=counts[ReferenceCategory.STAGE],
            drawing_count=counts[ReferenceCategory.DRAWING_TYPE],
            hierarchy_count=counts[ReferenceCategory.HIERARCHY],
            bom_count=counts[ReferenceCategory.BOM_PRODUCT]
        )

        with metrics_service.measure_time("parse_import_file", {"job_id": str(self.job_id)}):
            drafts = self._read_drafts(job, resolver, layout, token, tracker)

        tracker.set_total(len(drafts) + tracker.snapshot()["failed"])
        logger.info(
            "Import file parsed",
            job_id=str(self.job_id),
            drafts=len(drafts),
            parse_failures=tracker.snapshot()["failed"]
        )

        persistence = PersistenceUnit(self.session_factory, job_id=self.job_id)
        pool = BatchWorkerPool(
            persistence.persist,
            on_result=tracker.record,
            on_batch=tracker.batch_completed,
            job_id=self.job_id
        )
        start_time = time.time()
        with metrics_service.measure_time("dispatch_import_batches", {"job_id": str(self.job_id)}):
            report = pool.process(drafts, job.batch_size, job.concurrent_batches, token)
        metrics_service.record_import_metrics(self.job_id, report, int((time.time() - start_time) * 1000))

        if report.cancelled or token.is_cancelled(force=True):
            state = JobState.CANCELLED
        elif tracker.snapshot()["failure_kinds"].get(FailureKind.DATABASE_ERROR.value):
            state = JobState.FAILED
        else:
            state = JobState.SUCCEEDED

        self._finish(tracker, state)
        return state

    def _read_drafts(self, job: ClaimedJob, resolver: ReferenceResolver, layout: ColumnLayout,
                     token: CancellationToken, tracker: ProgressTracker) -> List[ElementTypeDraft]:
        reader = TabularReader(job.file_path, layout)
        assembler = None
        drafts = []
        for raw in reader.rows():
            if token.is_cancelled():
                logger.info("Import cancelled while parsing", job_id=str(self.job_id), row_number=raw.row_number)
                tracker.set_total(len(drafts) + tracker.snapshot()["failed"])
                self._finish(tracker, JobState.CANCELLED)
                raise ImportCancelled(str(self.job_id))
            if assembler is None:
                assembler = RowAssembler(job.project_id, resolver, reader.plan, created_by=job.created_by)
            try:
                drafts.append(assembler.assemble(raw))
            except InvalidRow as e:
                tracker.record_parse_failure(e)
        return drafts

    def _finish(self, tracker: ProgressTracker, state: JobState):
        tracker.flush(force=True, state=state.value, finished_at=_utcnow())

    def _fail(self, tracker: ProgressTracker, error: Exception) -> JobState:
        reason = str(error) or type(error).__name__
        logger.error(
            "Import job failed",
            job_id=str(self.job_id),
            error_type=type(error).__name__,
            error=reason
        )
        tracker.add_error(f"job: {type(error).__name__}: {reason}")
        try:
            self._finish(tracker, JobState.FAILED)
        except Exception as e:
            logger.error("Failed to record job failure", job_id=str(self.job_id), error=str(e))
        return JobState.FAILED


def process_import_job(job_id_str: str) -> Dict[str, Any]:
    """
    Main job processing function called by RQ worker.

    Args:
        job_id_str: String representation of the import job UUID

    Returns:
        Job outcome summary
    """
    job_id = uuid.UUID(job_id_str)
    redis_client = redis.from_url(settings.redis_url)
    runner = ImportJobRunner(
        job_id,
        get_session_factory(),
        cancel_probe=redis_cancel_probe(redis_client, job_id)
    )
    return runner.run()


def fail_orphaned_job(job_id: uuid.UUID, reason: str,
                      session_factory: Optional[Callable[[], Session]] = None) -> bool:
    """
    Fail a job the runner could not finish itself (worker timeout, crash).

    Only a job still marked running is touched; False means it had
    already reached a terminal state.
    """
    session_factory = session_factory or get_session_factory()
    with transaction_scope(session_factory) as db:
        job = db.query(ImportJob).filter(
            ImportJob.id == job_id,
            ImportJob.state == JobState.RUNNING.value
        ).with_for_update().first()
        if job is None:
            return False
        summary = dict(job.error_summary_json or {})
        summary["errors"] = list(summary.get("errors") or []) + [f"job: {reason}"]
        job.error_summary_json = summary
        job.state = JobState.FAILED.value
        job.finished_at = _utcnow()

    logger.error("Orphaned import job marked failed", job_id=str(job_id), reason=reason)
    return True
