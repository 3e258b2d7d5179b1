"""
Precast import worker - RQ worker process.
Main worker entry point for processing element-type import jobs.
"""

import logging
import os
import sys
import uuid

import redis
from rq import Queue, SimpleWorker
import structlog

from worker.config import settings
from worker.importer.job_control import job_registry
from worker.job_processor import fail_orphaned_job, process_import_job

IMPORT_JOB_FUNCTION = f"{process_import_job.__module__}.{process_import_job.__name__}"


def configure_logging():
    """JSON logs on stderr so they appear in container logs."""
    logging.basicConfig(
        level=getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


class ImportWorker(SimpleWorker):
    """
    Runs imports in the worker process itself so the job registry sees them;
    a stop request cancels running imports before the warm shutdown.
    """

    def request_stop(self, signum, frame):
        cancelled = job_registry.cancel_all()
        if cancelled:
            logger.info("Cancelling running imports for shutdown", jobs=cancelled)
        super().request_stop(signum, frame)


def fail_import_on_exception(job, exc_type, exc_value, traceback) -> bool:
    """RQ exception handler: an import the runner could not close is failed here."""
    if job.func_name == IMPORT_JOB_FUNCTION and job.args:
        try:
            fail_orphaned_job(uuid.UUID(str(job.args[0])), f"{exc_type.__name__}: {exc_value}")
        except Exception as e:
            logger.error("Failed to mark orphaned import job", rq_job_id=job.id, error=str(e))
    # Let RQ's default handling (moving the job to the failed registry) run as well
    return True


def build_worker(redis_connection) -> ImportWorker:
    queues = [Queue(settings.import_queue_name, connection=redis_connection)]
    return ImportWorker(
        queues,
        connection=redis_connection,
        name=f"precast-import-worker-{os.getpid()}",
        exception_handlers=[fail_import_on_exception]
    )


def main():
    """Main worker process."""
    configure_logging()
    logger.info(
        "Starting precast import worker",
        redis_url=settings.redis_url,
        queue=settings.import_queue_name
    )

    worker = build_worker(redis.from_url(settings.redis_url))
    logger.info(
        "Worker created successfully",
        worker_name=worker.name,
        queues=[q.name for q in worker.queues]
    )

    try:
        worker.work(with_scheduler=False)
    except KeyboardInterrupt:
        logger.info("Worker interrupted, shutting down gracefully")
    except Exception as e:
        logger.error("Worker error", error=str(e))
        raise
    finally:
        logger.info("Worker shutdown complete")


if __name__ == '__main__':
    main()
