"""
Precast Import - FastAPI Backend Application
Element-type bulk import and template export endpoints.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, UploadFile, File, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError
import time
import uuid
from typing import List, Optional
import structlog

from worker.importer.batch_pool import clamp_tuning

from .config import settings
from .database.connection import get_db, ping_database
from .models.api_models import (
    ImportSubmitResponse, ImportJobStatusResponse, ImportJobSummary, CancelResponse, ErrorResponse,
)
from .services.activity_log_service import ActivityEntry, activity_log_service
from .services.file_service import FileService
from .services.job_service import JobService
from .services.logging_service import logging_service
from .services.session_service import CallerContext, get_caller
from .services.template_service import TemplateService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    activity_log_service.start()
    yield
    activity_log_service.stop()


# Create FastAPI app
app = FastAPI(
    title="Precast Import",
    description="Bulk element-type import with background jobs and template export",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services
file_service = FileService()
job_service = JobService()
template_service = TemplateService()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()
    logging_service.log_api_request(
        request_id,
        request.method,
        request.url.path,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None
    )
    response = await call_next(request)
    logging_service.log_api_response(request_id, response.status_code, int((time.time() - start_time) * 1000))
    return response


@app.exception_handler(OperationalError)
async def db_operational_error_handler(request: Request, exc: OperationalError):
    """Return 503 with detail so CORS headers are applied and client sees a clear message."""
    request_id = getattr(request.state, "request_id", None)
    logger.error("Database unavailable", request_id=request_id, error=str(getattr(exc, "orig", exc)))
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(error="database_unavailable", detail="Database is unavailable",
                              request_id=request_id).model_dump()
    )


def _parse_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        return int(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


def _parse_job_id(job_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Import job not found")


def _record_activity(caller: CallerContext, event_name: str, description: str, project_id: int):
    activity_log_service.record(ActivityEntry(
        event_context="Element Type",
        event_name=event_name,
        description=description,
        user_name=caller.user_name,
        host_name=caller.host_name,
        ip_address=caller.ip_address,
        project_id=project_id
    ))


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint for container monitoring."""
    database_ok = ping_database(db)
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "precast-import-backend",
        "database": "ok" if database_ok else "unavailable",
        "activity_log_dropped": activity_log_service.dropped
    }


@app.post("/import/element_type/{project_id}", response_model=ImportSubmitResponse)
async def import_element_types(
    request: Request,
    project_id: str,
    file: Optional[UploadFile] = File(None),
    batch_size: Optional[str] = Query(None),
    concurrent_batches: Optional[str] = Query(None),
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """Stage an element-type file and queue it for background import."""
    request_id = request.state.request_id

    parsed_project_id = _parse_int(project_id, "project_id")
    if parsed_project_id is None:
        raise HTTPException(status_code=400, detail="project_id is required")
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="file is required")
    size, concurrency = clamp_tuning(
        _parse_int(batch_size, "batch_size"),
        _parse_int(concurrent_batches, "concurrent_batches")
    )

    content = await file.read()
    rejection = file_service.check_import(file.filename, len(content))
    if rejection:
        raise HTTPException(status_code=400, detail=rejection)

    logging_service.log_import_event(
        "Element type import submitted",
        request_id,
        project_id=parsed_project_id,
        filename=file.filename,
        batch_size=size,
        concurrent_batches=concurrency,
        user=caller.user_name
    )

    try:
        file_path, file_hash = await file_service.stage_import_file(parsed_project_id, file.filename, content)
    except OSError as e:
        logging_service.log_import_event(
            "Failed to stage import file", request_id, project_id=parsed_project_id, error=str(e)
        )
        raise HTTPException(status_code=500, detail="Failed to store uploaded file")
    logging_service.log_staged_file(request_id, file_path, len(content), file_hash)

    try:
        job = job_service.create_import_job(
            db, parsed_project_id, file_path, size, concurrency, created_by=caller.user_name
        )
    except Exception as e:
        file_service.delete_file(file_path)
        logging_service.log_import_event(
            "Failed to create import job", request_id, project_id=parsed_project_id, error=str(e)
        )
        raise HTTPException(status_code=500, detail="Failed to create import job")

    try:
        job_service.enqueue_job(job.id)
    except Exception as e:
        job_service.mark_failed(db, job, "could not be queued")
        logging_service.log_import_event(
            "Failed to queue import job", request_id, project_id=parsed_project_id, job_id=job.id, error=str(e)
        )
        raise HTTPException(status_code=503, detail="Job queue unavailable")

    _record_activity(
        caller, "Import",
        f"Element type import queued from {file.filename} (sha256 {file_hash[:12]})",
        parsed_project_id
    )

    logging_service.log_import_event(
        "Element type import queued", request_id, project_id=parsed_project_id, job_id=job.id
    )

    return ImportSubmitResponse(
        job_id=job.id,
        status=job.state,
        batch_size=size,
        concurrent_batches=concurrency,
        file_path=file_path
    )


@app.get("/import/jobs/{job_id}", response_model=ImportJobStatusResponse)
async def get_import_job(
    job_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """Current state, counters and error summary of an import job."""
    job = job_service.get_job(db, _parse_job_id(job_id))
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")
    return ImportJobStatusResponse.from_job(job)


@app.post("/import/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_import_job(
    request: Request,
    job_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """Request cooperative cancellation; repeated calls are harmless."""
    job = job_service.get_job(db, _parse_job_id(job_id))
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")

    try:
        state = job_service.cancel_job(db, job)
    except OperationalError:
        raise
    except Exception as e:
        logging_service.log_import_event(
            "Failed to request cancellation", request.state.request_id,
            project_id=job.project_id, job_id=job.id, error=str(e)
        )
        raise HTTPException(status_code=503, detail="Cancellation could not be delivered")

    # Terminal jobs are a no-op; state carries the outcome
    if state in ("running", "cancelled"):
        logging_service.log_import_event(
            "Import cancellation requested", request.state.request_id,
            project_id=job.project_id, job_id=job.id, state=state
        )
        _record_activity(caller, "Cancel Import", f"Element type import {job_id} cancelled", job.project_id)
    return CancelResponse(cancelled=True, state=state)


@app.get("/projects/{project_id}/import/jobs", response_model=List[ImportJobSummary])
async def list_project_import_jobs(
    project_id: int,
    limit: int = Query(50, ge=1, le=500),
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """Import jobs of a project, newest first."""
    jobs = job_service.list_project_jobs(db, project_id, limit)
    return [ImportJobSummary.model_validate(job) for job in jobs]


@app.get("/export/template/element_type/{project_id}")
async def export_element_type_template(
    project_id: int,
    format: str = Query("xlsx", pattern="^(xlsx|csv)$"),
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """Blank import template listing the project's reference labels."""
    project_name = template_service.project_name(db, project_id)
    if project_name is None:
        raise HTTPException(status_code=404, detail="Project not found")

    content, media_type, filename = template_service.build(db, project_id, project_name, format)
    return StreamingResponse(
        content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
