"""Background worker – polls for queued jobs and converts them."""

from __future__ import annotations

import logging
import threading

import config
from services.error_log import ErrorLog
from services.history_store import HistoryStore
from services.job_manager import JobManager
from services.label_renderer import LabelRenderClient
from services.pipeline import run_pipeline

logger = logging.getLogger("zpl.worker")


class ConversionWorker:
    """
    Background worker that runs in a daemon thread.
    Polls for queued jobs and executes the conversion pipeline, one at a time.
    """

    def __init__(
        self,
        manager: JobManager,
        history: HistoryStore,
        error_log: ErrorLog,
        client: LabelRenderClient | None = None,
        poll_interval: float = config.WORKER_POLL_INTERVAL,
    ) -> None:
        self.manager = manager
        self.history = history
        self.error_log = error_log
        self.client = client
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="conversion-worker")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)

    def process_next(self) -> bool:
        """Run one queued job if there is one; returns whether a job ran."""
        job = self.manager.next_queued_job()
        if not job:
            return False
        logger.info("Processing job: %s", job["id"])
        run_pipeline(job, self.manager, self.history, self.error_log, client=self.client)
        return True

    def _run(self) -> None:
        logger.info("Worker thread started (poll interval=%ss)", self.poll_interval)
        while not self._stop_event.is_set():
            try:
                if not self.process_next():
                    # No work – sleep before polling again
                    self._stop_event.wait(timeout=self.poll_interval)
            except Exception as e:
                logger.error("Worker loop error: %s", e, exc_info=True)
                self._stop_event.wait(timeout=self.poll_interval)
