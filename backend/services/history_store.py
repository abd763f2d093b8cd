"""Processing history and shared-file tokens, backed by SQLite."""

from __future__ import annotations

import logging
import math
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from services.database import connect, utc_now

logger = logging.getLogger("zpl.history")

DATE_FILTER_DAYS = {"today": 0, "7days": 7, "30days": 30}


class TokenError(Exception):
    """Raised when a share token cannot be used."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class HistoryStore:
    def __init__(self, db_path: Path, storage_dir: Path) -> None:
        self.db_path = str(db_path)
        self.storage_dir = Path(storage_dir)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def add_record(
        self,
        label_count: int,
        pdf_path: str,
        processing_time_ms: int | None = None,
        processing_type: str = "standard",
    ) -> str:
        record_id = uuid.uuid4().hex
        with connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO processing_history "
                "(id, created_at, label_count, pdf_path, processing_time_ms, processing_type) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (record_id, utc_now(), label_count, pdf_path, processing_time_ms, processing_type),
            )
        logger.info(
            "History saved: %s labels=%d time=%sms type=%s",
            record_id, label_count, processing_time_ms, processing_type,
        )
        return record_id

    def get_record(self, record_id: str) -> Optional[dict]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM processing_history WHERE id = ?", (record_id,)
            ).fetchone()
        return dict(row) if row else None

    def list_records(
        self,
        *,
        date_filter: str = "all",
        type_filter: str = "all",
        query: str = "",
        page: int = 1,
        page_size: int = 10,
        now: datetime | None = None,
    ) -> tuple[list[dict], int]:
        """Return one page of records (newest first) and the filtered total.

        ``type_filter="a4"`` also matches HD runs; ``query`` matches the
        label count as text.
        """
        sql = "SELECT * FROM processing_history WHERE 1 = 1"
        params: list = []

        if date_filter != "all":
            if date_filter not in DATE_FILTER_DAYS:
                raise ValueError(f"Unknown date filter '{date_filter}'")
            now = now or datetime.now(timezone.utc)
            start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
            since = start_of_day - timedelta(days=DATE_FILTER_DAYS[date_filter])
            sql += " AND created_at >= ?"
            params.append(since.isoformat())

        if type_filter == "a4":
            sql += " AND processing_type IN ('a4', 'hd')"
        elif type_filter != "all":
            sql += " AND COALESCE(processing_type, 'standard') = ?"
            params.append(type_filter)

        if query.strip():
            sql += " AND CAST(label_count AS TEXT) LIKE ?"
            params.append(f"%{query.strip()}%")

        with connect(self.db_path) as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM ({sql})", params
            ).fetchone()[0]
            rows = conn.execute(
                sql + " ORDER BY created_at DESC LIMIT ? OFFSET ?",
                params + [page_size, (max(page, 1) - 1) * page_size],
            ).fetchall()
        return [dict(r) for r in rows], total

    def stats(self) -> dict:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n, COALESCE(SUM(label_count), 0) AS labels, "
                "AVG(processing_time_ms) AS avg_ms FROM processing_history"
            ).fetchone()
            by_type = conn.execute(
                "SELECT processing_type, COUNT(*) AS n FROM processing_history "
                "GROUP BY processing_type"
            ).fetchall()
        return {
            "total_records": row["n"],
            "total_labels": row["labels"],
            "average_processing_time_ms": row["avg_ms"],
            "by_type": {r["processing_type"]: r["n"] for r in by_type},
        }

    def delete_record(self, record_id: str) -> tuple[bool, bool]:
        """Delete a record, then try to remove its PDF.

        Returns (record_deleted, file_deleted). File removal failures are
        logged and never undo the record deletion.
        """
        record = self.get_record(record_id)
        if record is None:
            return False, False

        with connect(self.db_path) as conn:
            conn.execute("DELETE FROM processing_history WHERE id = ?", (record_id,))
            conn.execute(
                "DELETE FROM file_access_tokens WHERE file_path = ?", (record["pdf_path"],)
            )
        logger.info("History record deleted: %s", record_id)

        pdf_path = record.get("pdf_path")
        if not pdf_path:
            logger.info("No pdf_path on %s, skipping storage deletion", record_id)
            return True, False
        try:
            self.resolve_path(pdf_path).unlink()
            logger.info("File deleted from storage: %s", pdf_path)
            return True, True
        except (OSError, ValueError) as e:
            logger.warning("Storage deletion failed for %s: %s", pdf_path, e)
            return True, False

    def delete_records(self, record_ids: list[str]) -> tuple[int, int]:
        deleted = files = 0
        for record_id in record_ids:
            ok, file_ok = self.delete_record(record_id)
            deleted += ok
            files += file_ok
        return deleted, files

    def resolve_path(self, pdf_path: str) -> Path:
        """Map a stored relative path to a file inside the storage dir."""
        path = (self.storage_dir / pdf_path).resolve()
        if self.storage_dir.resolve() not in path.parents:
            raise ValueError(f"Path escapes storage: {pdf_path}")
        return path

    # ------------------------------------------------------------------
    # Share tokens
    # ------------------------------------------------------------------
    def create_token(
        self,
        file_path: str,
        expires_hours: int = 24,
        max_access: int | None = None,
    ) -> dict:
        token = secrets.token_urlsafe(24)
        expires_at = (datetime.now(timezone.utc) + timedelta(hours=expires_hours)).isoformat()
        with connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO file_access_tokens "
                "(token, file_path, expires_at, max_access, created_at) VALUES (?, ?, ?, ?, ?)",
                (token, file_path, expires_at, max_access, utc_now()),
            )
        logger.info("Share token created for %s (expires %s)", file_path, expires_at)
        return {"token": token, "expires_at": expires_at}

    def consume_token(self, token: str, now: datetime | None = None) -> Path:
        """Validate a token, count one access and return the file it grants."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM file_access_tokens WHERE token = ?", (token,)
            ).fetchone()
            if row is None:
                raise TokenError("Invalid or expired token", 404)

            now = now or datetime.now(timezone.utc)
            if datetime.fromisoformat(row["expires_at"]) < now:
                raise TokenError("Token has expired", 410)

            if row["max_access"] is not None and row["accessed_count"] >= row["max_access"]:
                raise TokenError("Access limit exceeded", 429)

            path = self.resolve_path(row["file_path"])
            if not path.exists():
                raise TokenError("File not found", 404)

            conn.execute(
                "UPDATE file_access_tokens SET accessed_count = accessed_count + 1 WHERE token = ?",
                (token,),
            )
        return path


def total_pages(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / page_size)) if page_size else 1
