"""Token-protected file serving for shared PDFs."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse

from services.history_store import TokenError

router = APIRouter()


@router.get("/{token}")
async def serve_file(token: str, request: Request):
    """Serve a shared PDF; 404 unknown, 410 expired, 429 access limit reached."""
    try:
        path = request.app.state.history_store.consume_token(token)
    except TokenError as e:
        raise HTTPException(e.status_code, str(e))
    except ValueError:
        raise HTTPException(404, "File not found")

    return FileResponse(
        path,
        media_type="application/pdf",
        filename=path.name,
        headers={"Cache-Control": "private, max-age=3600"},
    )
