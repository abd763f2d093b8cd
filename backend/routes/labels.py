"""Label preview and conversion diagnostics."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from models import ErrorRecord, LabelPreview, LabelPreviewRequest
from services.zpl_parser import preview

router = APIRouter()


@router.post("/labels/preview", response_model=LabelPreview)
async def preview_labels(body: LabelPreviewRequest):
    """Count the labels in a ZPL document without converting it."""
    return LabelPreview(**preview(body.zpl))


@router.get("/errors", response_model=list[ErrorRecord])
async def list_errors(request: Request, limit: int = Query(100, ge=1, le=500)):
    """Most recent conversion errors first."""
    return [ErrorRecord(**row) for row in request.app.state.error_log.recent_errors(limit)]
