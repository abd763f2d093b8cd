"""SQLite connection helper and schema."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("zpl.database")

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id          TEXT PRIMARY KEY,
    status      TEXT NOT NULL DEFAULT 'queued',
    mode        TEXT NOT NULL DEFAULT 'standard',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    zpl_path    TEXT NOT NULL,
    output_path TEXT,
    label_count INTEGER NOT NULL DEFAULT 0,
    logs        TEXT NOT NULL DEFAULT '',
    error       TEXT,
    progress    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS processing_history (
    id                 TEXT PRIMARY KEY,
    created_at         TEXT NOT NULL,
    label_count        INTEGER NOT NULL,
    pdf_path           TEXT,
    processing_time_ms INTEGER,
    processing_type    TEXT NOT NULL DEFAULT 'standard'
);

CREATE TABLE IF NOT EXISTS processing_errors (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at            TEXT NOT NULL,
    error_type            TEXT NOT NULL,
    error_message         TEXT NOT NULL,
    error_stack           TEXT,
    processing_type       TEXT NOT NULL,
    label_count_attempted INTEGER,
    processing_time_ms    INTEGER,
    metadata              TEXT
);

CREATE TABLE IF NOT EXISTS processing_logs (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at         TEXT NOT NULL,
    job_id             TEXT NOT NULL,
    label_number       INTEGER NOT NULL,
    zpl_content        TEXT NOT NULL,
    status             TEXT NOT NULL,
    error_message      TEXT,
    processing_time_ms INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS file_access_tokens (
    token          TEXT PRIMARY KEY,
    file_path      TEXT NOT NULL,
    expires_at     TEXT NOT NULL,
    max_access     INTEGER,
    accessed_count INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL
);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def connect(db_path: Path | str):
    conn = sqlite3.connect(str(db_path), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db(db_path: Path | str) -> None:
    with connect(db_path) as conn:
        conn.executescript(SCHEMA)
    logger.info("Database initialised at %s", db_path)
