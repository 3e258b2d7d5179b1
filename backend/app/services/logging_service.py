"""
Logging service: structlog setup plus the API and import-submission events
every request handler emits.
"""

import logging
import sys
import uuid
import structlog
from typing import Any, Optional

from ..config import settings

class LoggingService:
    """JSON logs correlated by request id and, once known, import job id."""

    def __init__(self):
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

        self.logger = structlog.get_logger()

    def log_api_request(self, request_id: str, method: str, path: str,
                       user_agent: Optional[str] = None,
                       ip_address: Optional[str] = None):
        self.logger.info(
            "API request",
            request_id=request_id,
            method=method,
            path=path,
            user_agent=user_agent,
            ip_address=ip_address
        )

    def log_api_response(self, request_id: str, status_code: int, duration_ms: int):
        self.logger.info(
            "API response",
            request_id=request_id,
            status_code=status_code,
            duration_ms=duration_ms
        )

    def log_import_event(self, event: str, request_id: str, project_id: Optional[int] = None,
                         job_id: Optional[uuid.UUID] = None, error: Optional[str] = None,
                         **context: Any):
        """Import submission and cancellation milestones; ``error`` logs at error level."""
        fields = {"request_id": request_id, "project_id": project_id, **context}
        if job_id is not None:
            fields["job_id"] = str(job_id)
        if error:
            self.logger.error(event, error=error, **fields)
        else:
            self.logger.info(event, **fields)

    def log_staged_file(self, request_id: str, file_path: str, size: int, file_hash: str):
        self.logger.info(
            "Import file staged",
            request_id=request_id,
            file_path=file_path,
            file_size=size,
            sha256=file_hash
        )

# Global logging service instance
logging_service = LoggingService()
