"""API routes for the processing history and file sharing."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse

import config
from models import (
    BulkDeleteRequest,
    DeleteResponse,
    HistoryPage,
    HistoryRecord,
    HistoryStats,
    ShareRequest,
    ShareResponse,
)
from services.history_store import HistoryStore, total_pages
from services.url_shortener import shorten_url

router = APIRouter()


def _store(request: Request) -> HistoryStore:
    return request.app.state.history_store


def _to_record(row: dict) -> HistoryRecord:
    return HistoryRecord(
        id=row["id"],
        created_at=row["created_at"],
        label_count=row["label_count"],
        pdf_path=row.get("pdf_path"),
        pdf_url=f"/api/history/{row['id']}/download" if row.get("pdf_path") else None,
        processing_time_ms=row.get("processing_time_ms"),
        processing_type=row.get("processing_type") or "standard",
    )


def _get_record(request: Request, record_id: str) -> dict:
    record = _store(request).get_record(record_id)
    if not record:
        raise HTTPException(404, f"History record '{record_id}' not found.")
    return record


# ---------------------------------------------------------------------------
# GET /api/history
# ---------------------------------------------------------------------------
@router.get("", response_model=HistoryPage)
async def list_history(
    request: Request,
    date_filter: str = Query("all", alias="date", description="all | today | 7days | 30days"),
    type_filter: str = Query("all", alias="type", description="all | standard | a4 (a4 includes hd)"),
    q: str = Query("", description="Matches the label count"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
):
    """Filtered, paginated history (newest first)."""
    try:
        rows, total = _store(request).list_records(
            date_filter=date_filter, type_filter=type_filter, query=q,
            page=page, page_size=page_size,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))

    return HistoryPage(
        items=[_to_record(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages(total, page_size),
    )


@router.get("/stats", response_model=HistoryStats)
async def history_stats(request: Request):
    return HistoryStats(**_store(request).stats())


# ---------------------------------------------------------------------------
# GET /api/history/{record_id}/download
# ---------------------------------------------------------------------------
@router.get("/{record_id}/download")
async def download_record(record_id: str, request: Request):
    record = _get_record(request, record_id)
    if not record.get("pdf_path"):
        raise HTTPException(404, "No PDF stored for this record.")
    try:
        path = _store(request).resolve_path(record["pdf_path"])
    except ValueError:
        raise HTTPException(404, "PDF file not found.")
    if not path.exists():
        raise HTTPException(404, "PDF file not found on disk.")

    return FileResponse(path, media_type="application/pdf", filename=f"labels-{record_id}.pdf")


# ---------------------------------------------------------------------------
# DELETE /api/history/{record_id}
# ---------------------------------------------------------------------------
@router.delete("/{record_id}", response_model=DeleteResponse)
async def delete_record(record_id: str, request: Request):
    """Delete a record; the PDF is removed on a best-effort basis."""
    deleted, file_deleted = _store(request).delete_record(record_id)
    if not deleted:
        raise HTTPException(404, f"History record '{record_id}' not found.")
    return DeleteResponse(deleted_count=1, file_deleted=int(file_deleted))


@router.post("/bulk-delete", response_model=DeleteResponse)
async def bulk_delete(body: BulkDeleteRequest, request: Request):
    if not body.ids:
        raise HTTPException(400, "No record ids provided.")
    deleted, files = _store(request).delete_records(body.ids)
    return DeleteResponse(deleted_count=deleted, file_deleted=files)


# ---------------------------------------------------------------------------
# POST /api/history/{record_id}/share
# ---------------------------------------------------------------------------
@router.post("/{record_id}/share", response_model=ShareResponse)
def share_record(record_id: str, request: Request, body: Optional[ShareRequest] = None):
    """Create an expiring download link (plus a shortened version) for a PDF."""
    body = body or ShareRequest(expires_hours=config.SHARE_DEFAULT_EXPIRES_HOURS)
    record = _get_record(request, record_id)
    if not record.get("pdf_path"):
        raise HTTPException(404, "No PDF stored for this record.")

    token = _store(request).create_token(
        record["pdf_path"], expires_hours=body.expires_hours, max_access=body.max_access,
    )
    url = f"{config.PUBLIC_BASE_URL}/api/files/{token['token']}"
    return ShareResponse(
        token=token["token"],
        url=url,
        short_url=shorten_url(url),
        expires_at=token["expires_at"],
    )
