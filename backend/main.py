"""FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from routes.files import router as files_router
from routes.history import router as history_router
from routes.jobs import router as jobs_router
from routes.labels import router as labels_router
from services.error_log import ErrorLog
from services.history_store import HistoryStore
from services.job_manager import JobManager
from workers.processor import ConversionWorker

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("zpl")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
app = FastAPI(
    title="ZPL Label Converter",
    description="Convert ZPL label files into printable PDFs",
    version="1.0.0",
)

# CORS – allow the Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Shared state exposed via app.state
# ---------------------------------------------------------------------------
job_manager = JobManager(config.DATABASE_PATH)
history_store = HistoryStore(config.DATABASE_PATH, config.STORAGE_DIR)
error_log = ErrorLog(config.DATABASE_PATH)
app.state.job_manager = job_manager
app.state.history_store = history_store
app.state.error_log = error_log

# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
app.include_router(jobs_router, prefix="/api/jobs", tags=["jobs"])
app.include_router(history_router, prefix="/api/history", tags=["history"])
app.include_router(files_router, prefix="/api/files", tags=["files"])
app.include_router(labels_router, prefix="/api", tags=["labels"])


# ---------------------------------------------------------------------------
# Background worker (runs in a dedicated thread)
# ---------------------------------------------------------------------------
worker: ConversionWorker | None = None


@app.on_event("startup")
async def startup_event() -> None:
    global worker
    job_manager.init_db()
    worker = ConversionWorker(job_manager, history_store, error_log)
    worker.start()
    logger.info("Background conversion worker started.")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global worker
    if worker:
        worker.stop()
        logger.info("Background conversion worker stopped.")


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return {"status": "ok"}
