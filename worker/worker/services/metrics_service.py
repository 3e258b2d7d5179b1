"""
Metrics service for the import worker.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

import structlog

from ..importer.records import BatchReport

logger = structlog.get_logger()


class MetricsService:
    """Timing and throughput metrics, reported through structured logs."""

    @contextmanager
    def measure_time(self, operation_name: str, context: Optional[Dict[str, Any]] = None):
        """Context manager for measuring operation duration."""
        start_time = time.time()
        operation_context = context or {}

        try:
            yield
            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(
                f"Operation completed: {operation_name}",
                operation=operation_name,
                duration_ms=duration_ms,
                **operation_context
            )
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Operation failed: {operation_name}",
                operation=operation_name,
                duration_ms=duration_ms,
                error=str(e),
                **operation_context
            )
            raise

    def import_metrics(self, report: BatchReport, duration_ms: int) -> Dict[str, Any]:
        """Summarize a batch report for the job log."""
        batch_durations = [batch.duration_ms for batch in report.batches]
        processed = report.successes + report.failures
        return {
            "drafts": report.total_drafts,
            "batches": report.batch_count,
            "batches_dispatched": report.batches_dispatched,
            "batch_size": report.batch_size,
            "requested_concurrency": report.requested_concurrency,
            "effective_concurrency": report.effective_concurrency,
            "peak_concurrency": report.peak_concurrency,
            "successes": report.successes,
            "failures": report.failures,
            "slowest_batch_ms": max(batch_durations) if batch_durations else 0,
            "drafts_per_second": processed / max(duration_ms / 1000, 0.001),
        }

    def record_import_metrics(self, job_id, report: BatchReport, duration_ms: int) -> Dict[str, Any]:
        metrics = self.import_metrics(report, duration_ms)
        logger.info(
            "Import metrics recorded",
            job_id=str(job_id),
            duration_ms=duration_ms,
            **metrics
        )
        return metrics


# Global metrics service instance
metrics_service = MetricsService()
