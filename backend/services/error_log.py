"""Append-only diagnostic tables: fatal conversion errors and per-label logs."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from models import ErrorType
from services.database import connect, utc_now

logger = logging.getLogger("zpl.error_log")

MAX_ZPL_CHARS = 500


class ErrorLog:
    """Diagnostic writes swallow their own failures so they never break a run."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = str(db_path)

    def log_error(
        self,
        error_type: ErrorType,
        message: str,
        processing_type: str,
        *,
        stack: str | None = None,
        label_count: int | None = None,
        processing_time_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO processing_errors (created_at, error_type, error_message, "
                    "error_stack, processing_type, label_count_attempted, processing_time_ms, metadata) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        utc_now(),
                        error_type.value,
                        message,
                        stack,
                        processing_type,
                        label_count,
                        processing_time_ms,
                        json.dumps(metadata, default=str) if metadata else None,
                    ),
                )
            logger.info("Error logged: %s (%s)", error_type.value, processing_type)
        except sqlite3.Error as e:
            logger.error("Failed to log error to database: %s", e)

    def log_label(
        self,
        job_id: str,
        label_number: int,
        zpl_content: str,
        status: str,
        *,
        error_message: str | None = None,
        processing_time_ms: int = 0,
    ) -> None:
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO processing_logs (created_at, job_id, label_number, zpl_content, "
                    "status, error_message, processing_time_ms) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        utc_now(),
                        job_id,
                        label_number,
                        zpl_content[:MAX_ZPL_CHARS],
                        status,
                        error_message,
                        processing_time_ms,
                    ),
                )
        except sqlite3.Error as e:
            logger.error("Failed to save processing log for label %d: %s", label_number, e)

    def recent_errors(self, limit: int = 100) -> list[dict]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM processing_errors ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        results = []
        for r in rows:
            item = dict(r)
            item["metadata"] = json.loads(item["metadata"]) if item["metadata"] else None
            results.append(item)
        return results

    def label_logs(self, job_id: str) -> list[dict]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM processing_logs WHERE job_id = ? ORDER BY label_number ASC",
                (job_id,),
            ).fetchall()
        return [dict(r) for r in rows]
