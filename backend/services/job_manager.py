"""Job manager – SQLite-backed conversion job state management."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

from models import ConversionMode, JobStatus
from services.database import connect, init_db, utc_now

logger = logging.getLogger("zpl.job_manager")


class JobManager:
    """Thread-safe job CRUD backed by SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = str(db_path)

    def init_db(self) -> None:
        init_db(self.db_path)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def create_job(
        self,
        zpl_path: str,
        mode: ConversionMode = ConversionMode.STANDARD,
        label_count: int = 0,
    ) -> str:
        job_id = uuid.uuid4().hex[:12]
        now = utc_now()
        with connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO jobs (id, status, mode, created_at, updated_at, zpl_path, label_count) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (job_id, JobStatus.QUEUED.value, mode.value, now, now, zpl_path, label_count),
            )
        logger.info("Job created: %s (%s, %d labels)", job_id, mode.value, label_count)
        return job_id

    def get_job(self, job_id: str) -> Optional[dict]:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return dict(row) if row else None

    def list_jobs(self, limit: int = 50) -> list[dict]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(r) for r in rows]

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        progress: int | None = None,
        output_path: str | None = None,
        label_count: int | None = None,
        error: str | None = None,
    ) -> None:
        sets = ["status = ?", "updated_at = ?"]
        params: list = [status.value, utc_now()]
        if progress is not None:
            sets.append("progress = ?")
            params.append(progress)
        if output_path is not None:
            sets.append("output_path = ?")
            params.append(output_path)
        if label_count is not None:
            sets.append("label_count = ?")
            params.append(label_count)
        if error is not None:
            sets.append("error = ?")
            params.append(error)
        params.append(job_id)
        with connect(self.db_path) as conn:
            conn.execute(f"UPDATE jobs SET {', '.join(sets)} WHERE id = ?", params)

    def append_log(self, job_id: str, message: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE jobs SET logs = logs || ?, updated_at = ? WHERE id = ?",
                (message + "\n", utc_now(), job_id),
            )

    def next_queued_job(self) -> Optional[dict]:
        """Atomically grab the oldest queued job and mark it as processing."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at ASC LIMIT 1",
                (JobStatus.QUEUED.value,),
            ).fetchone()
            if row:
                conn.execute(
                    "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
                    (JobStatus.PROCESSING.value, utc_now(), row["id"]),
                )
                return dict(row)
        return None
