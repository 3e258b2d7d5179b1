"""
Pydantic models for API request/response serialization.
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
import uuid

class ImportSubmitResponse(BaseModel):
    job_id: uuid.UUID
    status: str = Field(default="pending")
    batch_size: int
    concurrent_batches: int
    file_path: str

class ImportJobStatusResponse(BaseModel):
    job_id: uuid.UUID
    project_id: int
    state: str
    processed: int
    succeeded: int
    failed: int
    total: int
    batch_size: int
    concurrent_batches: int
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job) -> "ImportJobStatusResponse":
        summary: Dict[str, Any] = job.error_summary_json or {}
        return cls(
            job_id=job.id,
            project_id=job.project_id,
            state=job.state,
            processed=job.processed or 0,
            succeeded=job.succeeded or 0,
            failed=job.failed or 0,
            total=job.total or 0,
            batch_size=job.batch_size,
            concurrent_batches=job.concurrent_batches,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            errors=list(summary.get("errors") or []),
            warnings=list(summary.get("warnings") or []),
        )

class ImportJobSummary(BaseModel):
    job_id: uuid.UUID = Field(validation_alias=AliasChoices("id", "job_id"))
    project_id: int
    state: str
    total: int
    processed: int
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class CancelResponse(BaseModel):
    cancelled: bool
    state: str

class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    request_id: Optional[str] = None
