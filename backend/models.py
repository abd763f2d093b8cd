"""Pydantic models for API request/response schemas."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class ConversionMode(str, Enum):
    STANDARD = "standard"
    A4 = "a4"
    HD = "hd"
    FAST = "fast"

    @property
    def processing_type(self) -> str:
        """History type recorded for this mode (fast runs count as standard)."""
        if self is ConversionMode.FAST:
            return ConversionMode.STANDARD.value
        return self.value


class ErrorType(str, Enum):
    API_ERROR = "api_error"
    UPLOAD_ERROR = "upload_error"
    CONVERSION_ERROR = "conversion_error"
    VALIDATION_ERROR = "validation_error"


class ConvertRequest(BaseModel):
    zpl: str
    mode: ConversionMode = ConversionMode.STANDARD


class JobResponse(BaseModel):
    id: str
    status: JobStatus
    mode: ConversionMode
    created_at: str
    updated_at: str
    logs: str
    error: Optional[str] = None
    download_url: Optional[str] = None
    progress: int = 0  # 0-100
    label_count: int = 0


class UploadResponse(BaseModel):
    job_id: str
    status: JobStatus
    label_count: int
    message: str


class LabelPreviewRequest(BaseModel):
    zpl: str


class LabelPreview(BaseModel):
    total: int
    valid: int
    invalid: int
    invalid_labels: list[int] = []


class HistoryRecord(BaseModel):
    id: str
    created_at: str
    label_count: int
    pdf_path: Optional[str] = None
    pdf_url: Optional[str] = None
    processing_time_ms: Optional[int] = None
    processing_type: str = "standard"


class HistoryPage(BaseModel):
    items: list[HistoryRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


class HistoryStats(BaseModel):
    total_records: int
    total_labels: int
    average_processing_time_ms: Optional[float] = None
    by_type: dict[str, int] = {}


class BulkDeleteRequest(BaseModel):
    ids: list[str]


class DeleteResponse(BaseModel):
    deleted_count: int
    file_deleted: int = 0


class ShareRequest(BaseModel):
    expires_hours: int = Field(default=24, ge=1, le=24 * 30)
    max_access: Optional[int] = Field(default=None, ge=1)


class ShareResponse(BaseModel):
    token: str
    url: str
    short_url: str
    expires_at: str


class ErrorRecord(BaseModel):
    id: int
    created_at: str
    error_type: ErrorType
    error_message: str
    error_stack: Optional[str] = None
    processing_type: str
    label_count_attempted: Optional[int] = None
    processing_time_ms: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None


class LabelLog(BaseModel):
    id: int
    job_id: str
    label_number: int
    zpl_content: str
    status: str
    error_message: Optional[str] = None
    processing_time_ms: int = 0
    created_at: str
