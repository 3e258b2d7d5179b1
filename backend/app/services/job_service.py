"""
Job service for managing import job lifecycle and Redis queue integration.
"""

import redis
from rq import Queue
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.orm import Session
import structlog

from worker.importer.errors import JobState
from worker.importer.job_control import cancel_key

from ..config import settings
from ..models.database_models import ImportJob

logger = structlog.get_logger()

IMPORT_JOB_FUNCTION = 'worker.job_processor.process_import_job'

class JobService:
    """Service for import job management and queuing."""

    def __init__(self):
        # Initialize Redis connection
        self.redis_client = redis.from_url(settings.redis_url)
        self.queue = Queue(settings.import_queue_name, connection=self.redis_client)

    def create_import_job(self, db: Session, project_id: int, file_path: str,
                          batch_size: int, concurrent_batches: int,
                          created_by: Optional[str] = None) -> ImportJob:
        """Persist a pending import job."""
        job = ImportJob(
            id=uuid.uuid4(),
            project_id=project_id,
            job_type="element_type",
            state=JobState.PENDING.value,
            batch_size=batch_size,
            concurrent_batches=concurrent_batches,
            file_path=file_path,
            created_by=created_by,
            error_summary_json={"errors": [], "warnings": []}
        )
        try:
            db.add(job)
            db.commit()
            db.refresh(job)
        except Exception as e:
            db.rollback()
            logger.error(
                "Failed to create import job",
                project_id=project_id,
                error=str(e)
            )
            raise

        logger.info(
            "Import job created",
            job_id=str(job.id),
            project_id=project_id,
            batch_size=batch_size,
            concurrent_batches=concurrent_batches
        )
        return job

    def enqueue_job(self, job_id: uuid.UUID) -> str:
        """
        Enqueue an import job for processing.

        Returns:
            RQ job ID
        """
        try:
            # Enqueue job by referencing the worker function by string
            rq_job = self.queue.enqueue(
                IMPORT_JOB_FUNCTION,
                str(job_id),
                job_timeout=settings.job_timeout,
                job_id=str(job_id)
            )

            logger.info(
                "Job enqueued successfully",
                job_id=str(job_id),
                rq_job_id=rq_job.id
            )

            return rq_job.id

        except Exception as e:
            logger.error(
                "Failed to enqueue job",
                job_id=str(job_id),
                error=str(e)
            )
            raise

    def mark_failed(self, db: Session, job: ImportJob, reason: str):
        """Terminate a job that never reached a worker."""
        job.state = JobState.FAILED.value
        job.finished_at = datetime.now(timezone.utc)
        job.error_summary_json = {"errors": [f"job: {reason}"], "warnings": []}
        db.commit()

    def get_job(self, db: Session, job_id: uuid.UUID) -> Optional[ImportJob]:
        return db.query(ImportJob).filter(ImportJob.id == job_id).first()

    def list_project_jobs(self, db: Session, project_id: int, limit: int = 50) -> List[ImportJob]:
        return db.query(ImportJob).filter(
            ImportJob.project_id == project_id
        ).order_by(ImportJob.created_at.desc()).limit(limit).all()

    def cancel_job(self, db: Session, job: ImportJob) -> str:
        """
        Request cancellation and return the job state afterwards.

        Pending jobs are cancelled outright; running jobs get a Redis flag the
        worker polls between drafts; terminal jobs are left alone.
        """
        if job.state == JobState.PENDING.value:
            updated = db.query(ImportJob).filter(
                ImportJob.id == job.id,
                ImportJob.state == JobState.PENDING.value
            ).update(
                {"state": JobState.CANCELLED.value, "finished_at": datetime.now(timezone.utc)},
                synchronize_session=False
            )
            db.commit()
            db.refresh(job)
            if updated:
                logger.info("Pending import job cancelled", job_id=str(job.id))
                return job.state

        if job.state == JobState.RUNNING.value:
            self.redis_client.set(cancel_key(job.id), 1, ex=settings.cancel_key_ttl)
            logger.info("Cancellation requested for running import job", job_id=str(job.id))

        return job.state
