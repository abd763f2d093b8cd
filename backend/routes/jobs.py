"""API routes for conversion jobs."""

from __future__ import annotations

import uuid
from pathlib import Path

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

import config
from models import (
    ConversionMode,
    ConvertRequest,
    ErrorType,
    JobResponse,
    JobStatus,
    LabelLog,
    UploadResponse,
)
from services.error_log import ErrorLog
from services.job_manager import JobManager
from services.zpl_parser import ZplInputError, count_labels, extract_zpl

router = APIRouter()


def _manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def _error_log(request: Request) -> ErrorLog:
    return request.app.state.error_log


def _to_response(job: dict) -> JobResponse:
    download_url = None
    if job["status"] == JobStatus.DONE.value and job.get("output_path"):
        download_url = f"/api/jobs/{job['id']}/download"
    return JobResponse(
        id=job["id"],
        status=JobStatus(job["status"]),
        mode=ConversionMode(job["mode"]),
        created_at=job["created_at"],
        updated_at=job["updated_at"],
        logs=job["logs"] or "",
        error=job.get("error"),
        download_url=download_url,
        progress=job.get("progress", 0),
        label_count=job.get("label_count", 0),
    )


def _enqueue(request: Request, zpl: str, mode: ConversionMode, source: str) -> UploadResponse:
    """Persist the ZPL to the uploads dir and queue a job for it."""
    label_count = count_labels(zpl)
    if label_count == 0:
        _error_log(request).log_error(
            ErrorType.VALIDATION_ERROR, "No ZPL labels found in input", mode.processing_type,
            label_count=0, metadata={"source": source},
        )
        raise HTTPException(400, "No ZPL labels found. Each label must start with ^XA and end with ^XZ.")

    zpl_path = config.UPLOADS_DIR / f"{uuid.uuid4().hex}.zpl"
    zpl_path.write_text(zpl, encoding="utf-8")

    manager = _manager(request)
    job_id = manager.create_job(str(zpl_path), mode=mode, label_count=label_count)
    manager.append_log(job_id, f"📁 ZPL received: {source} ({label_count} labels, {mode.value} mode)")

    return UploadResponse(
        job_id=job_id,
        status=JobStatus.QUEUED,
        label_count=label_count,
        message="Job created successfully. Processing will begin shortly.",
    )


# ---------------------------------------------------------------------------
# POST /api/jobs/upload
# ---------------------------------------------------------------------------
@router.post("/upload", response_model=UploadResponse)
async def upload_zpl(
    request: Request,
    file: UploadFile = File(...),
    mode: ConversionMode = Form(ConversionMode.STANDARD),
):
    """Upload a ZPL file (or a ZIP of ZPL files) and create a conversion job."""

    if not file.filename:
        raise HTTPException(400, "No file provided.")

    ext = Path(file.filename).suffix.lower()
    if ext not in config.ALLOWED_EXTENSIONS:
        raise HTTPException(
            400,
            f"Unsupported file type '{ext}'. Allowed: {', '.join(sorted(config.ALLOWED_EXTENSIONS))}",
        )

    content = await file.read()
    if len(content) > config.MAX_UPLOAD_SIZE:
        raise HTTPException(
            400, f"File too large. Maximum size: {config.MAX_UPLOAD_SIZE // (1024 * 1024)} MB.",
        )

    try:
        zpl = extract_zpl(file.filename, content)
    except ZplInputError as e:
        _error_log(request).log_error(
            ErrorType.UPLOAD_ERROR, str(e), mode.processing_type,
            metadata={"filename": file.filename, "size": len(content)},
        )
        raise HTTPException(400, str(e))

    return _enqueue(request, zpl, mode, file.filename)


# ---------------------------------------------------------------------------
# POST /api/jobs  (raw ZPL text)
# ---------------------------------------------------------------------------
@router.post("", response_model=UploadResponse)
async def create_job(body: ConvertRequest, request: Request):
    """Create a conversion job from ZPL text."""
    return _enqueue(request, body.zpl, body.mode, "text input")


# ---------------------------------------------------------------------------
# GET /api/jobs/{job_id}
# ---------------------------------------------------------------------------
@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(job_id: str, request: Request):
    """Get the current status of a job."""
    job = _manager(request).get_job(job_id)
    if not job:
        raise HTTPException(404, f"Job '{job_id}' not found.")
    return _to_response(job)


# ---------------------------------------------------------------------------
# GET /api/jobs/{job_id}/download
# ---------------------------------------------------------------------------
@router.get("/{job_id}/download")
async def download_pdf(job_id: str, request: Request):
    """Download the generated PDF."""
    job = _manager(request).get_job(job_id)
    if not job:
        raise HTTPException(404, f"Job '{job_id}' not found.")

    if job["status"] != JobStatus.DONE.value:
        raise HTTPException(400, "PDF is not ready yet.")

    output_path = job.get("output_path")
    if not output_path or not Path(output_path).exists():
        raise HTTPException(404, "PDF file not found on disk.")

    return FileResponse(
        output_path,
        media_type="application/pdf",
        filename=f"labels-{job_id}.pdf",
    )


# ---------------------------------------------------------------------------
# GET /api/jobs/{job_id}/labels
# ---------------------------------------------------------------------------
@router.get("/{job_id}/labels", response_model=list[LabelLog])
async def get_label_logs(job_id: str, request: Request):
    """Per-label results of a job."""
    if not _manager(request).get_job(job_id):
        raise HTTPException(404, f"Job '{job_id}' not found.")
    return [LabelLog(**row) for row in _error_log(request).label_logs(job_id)]


# ---------------------------------------------------------------------------
# GET /api/jobs  (list all jobs)
# ---------------------------------------------------------------------------
@router.get("/", response_model=list[JobResponse])
async def list_jobs(request: Request):
    """List all jobs (most recent first)."""
    return [_to_response(job) for job in _manager(request).list_jobs()]
