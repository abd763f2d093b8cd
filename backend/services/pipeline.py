"""Conversion pipeline – orchestrates parsing, batch rendering and PDF assembly."""

from __future__ import annotations

import logging
import time
import traceback
from pathlib import Path
from typing import Callable, Optional

from PIL import UnidentifiedImageError

import config
from models import ConversionMode, ErrorType, JobStatus
from services.batch_converter import BatchConverter, BatchOutcome, flatten_outputs
from services.error_log import ErrorLog
from services.history_store import HistoryStore
from services.job_manager import JobManager
from services.label_renderer import LabelApiError, LabelRenderClient
from services.pdf_layout import (
    merge_pdfs,
    pdf_page_count,
    render_a4_pdf,
    render_label_pages_pdf,
    upscale_png,
)
from services.processing_config import (
    ProcessingMetricsTracker,
    calculate_progress,
    config_for_mode,
)
from services.zpl_parser import filter_valid_labels, split_zpl_into_labels

logger = logging.getLogger("zpl.pipeline")


class PipelineError(Exception):
    """Raised when the pipeline encounters a fatal, user-facing error."""

    def __init__(self, message: str, error_type: ErrorType = ErrorType.CONVERSION_ERROR) -> None:
        super().__init__(message)
        self.error_type = error_type


def run_pipeline(
    job: dict,
    manager: JobManager,
    history: HistoryStore,
    error_log: ErrorLog,
    client: LabelRenderClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Execute the full ZPL → PDF conversion for a job.

    Steps:
      1. Read the ZPL and split it into labels
      2. Drop labels that would render blank
      3. Render batches through the label API (rate limited, with fallback)
      4. Assemble the PDF for the job's mode
      5. Store the PDF and record it in the processing history
    """
    job_id = job["id"]
    mode = ConversionMode(job.get("mode") or ConversionMode.STANDARD.value)
    started = time.monotonic()
    label_count = 0

    try:
        # ------------------------------------------------------------------
        # Step 1: Parse
        # ------------------------------------------------------------------
        _log(manager, job_id, f"🔍 Parsing ZPL ({mode.value} mode)…")
        try:
            zpl = Path(job["zpl_path"]).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise PipelineError(f"Could not read uploaded ZPL: {e}", ErrorType.UPLOAD_ERROR) from e

        labels = split_zpl_into_labels(zpl)
        label_count = len(labels)
        _log(manager, job_id, f"   {label_count} labels found.")
        manager.update_status(
            job_id, JobStatus.PROCESSING,
            progress=calculate_progress(mode, "parsing", 50), label_count=label_count,
        )

        # ------------------------------------------------------------------
        # Step 2: Validate
        # ------------------------------------------------------------------
        valid, invalid = filter_valid_labels(labels)
        skipped = set(invalid)
        numbers = [n for n in range(1, label_count + 1) if n not in skipped]
        for number in invalid:
            error_log.log_label(
                job_id, number, labels[number - 1], "skipped",
                error_message="Label would render blank",
            )
        if invalid:
            _log(manager, job_id, f"⚠️ Skipping {len(invalid)} invalid label(s): {invalid}")
        if not valid:
            raise PipelineError("No valid ZPL labels found.", ErrorType.VALIDATION_ERROR)
        manager.update_status(
            job_id, JobStatus.PROCESSING, progress=calculate_progress(mode, "parsing"),
        )

        # ------------------------------------------------------------------
        # Step 3: Render batches
        # ------------------------------------------------------------------
        processing_config = config_for_mode(mode)
        client = client or LabelRenderClient()
        converter = BatchConverter(
            processing_config, ProcessingMetricsTracker(config=processing_config), sleep=sleep,
        )
        _log(
            manager, job_id,
            f"🖨️ Rendering {len(valid)} labels in batches of {processing_config.labels_per_batch}…",
        )

        def on_progress(done: int, total: int) -> None:
            pct = calculate_progress(mode, "converting", done / total * 100)
            manager.update_status(job_id, JobStatus.PROCESSING, progress=pct)
            _log(manager, job_id, f"   🏷️ {done}/{total} labels sent.")

        per_label = mode in (ConversionMode.A4, ConversionMode.HD)
        retries = processing_config.max_retries
        render = _png_renderer(client, retries) if per_label else _pdf_renderer(client, retries)
        outcomes = converter.run(valid, render, on_progress=on_progress)
        if converter.using_fallback:
            _log(manager, job_id, "⚠️ High error rate, slowed down to the fallback delay.")

        # ------------------------------------------------------------------
        # Step 4: Assemble the PDF
        # ------------------------------------------------------------------
        if per_label:
            images = flatten_outputs(outcomes, len(valid))
            _record_label_results(error_log, job_id, numbers, valid, images)
            if mode is ConversionMode.HD:
                _log(manager, job_id, "🔎 Upscaling label images…")
                images = _upscale_images(images)
                manager.update_status(
                    job_id, JobStatus.PROCESSING, progress=calculate_progress(mode, "upscaling"),
                )
            _log(manager, job_id, "📄 Laying out PDF pages…")
            layout = render_label_pages_pdf if mode is ConversionMode.HD else render_a4_pdf
            pdf_bytes, rendered, failed = layout(images)
            failed = [numbers[i - 1] for i in failed]
            if not rendered:
                raise PipelineError("No labels could be rendered.", ErrorType.API_ERROR)
        else:
            pdf_bytes, rendered, failed = _assemble_batches(
                error_log, job_id, numbers, valid, outcomes,
            )

        if failed:
            _log(manager, job_id, f"⚠️ {len(failed)} label(s) failed to render: {failed}")
        manager.update_status(
            job_id, JobStatus.PROCESSING, progress=calculate_progress(mode, "organizing"),
        )

        # ------------------------------------------------------------------
        # Step 5: Store + record history
        # ------------------------------------------------------------------
        _log(manager, job_id, "💾 Saving PDF…")
        output_path = config.OUTPUTS_DIR / f"{job_id}.pdf"
        try:
            output_path.write_bytes(pdf_bytes)
        except OSError as e:
            raise PipelineError(f"Could not save PDF: {e}", ErrorType.UPLOAD_ERROR) from e
        manager.update_status(
            job_id, JobStatus.PROCESSING, progress=calculate_progress(mode, "uploading", 50),
        )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        history.add_record(
            label_count=rendered,
            pdf_path=str(output_path.relative_to(config.STORAGE_DIR)),
            processing_time_ms=elapsed_ms,
            processing_type=mode.processing_type,
        )

        _log(manager, job_id, f"✅ Conversion complete – {rendered} labels in {elapsed_ms} ms.")
        manager.update_status(
            job_id,
            JobStatus.DONE,
            progress=calculate_progress(mode, "complete"),
            output_path=str(output_path),
            label_count=rendered,
        )
        logger.info("Job %s completed successfully.", job_id)

    except PipelineError as e:
        _log(manager, job_id, f"❌ Pipeline error: {e}")
        manager.update_status(job_id, JobStatus.FAILED, error=str(e))
        error_log.log_error(
            e.error_type, str(e), mode.processing_type,
            label_count=label_count,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            metadata={"job_id": job_id, "mode": mode.value},
        )
        logger.error("Job %s failed (pipeline): %s", job_id, e)

    except Exception as e:
        tb = traceback.format_exc()
        _log(manager, job_id, f"❌ Unexpected error: {e}")
        manager.update_status(job_id, JobStatus.FAILED, error=str(e))
        error_log.log_error(
            ErrorType.CONVERSION_ERROR, str(e), mode.processing_type,
            stack=tb,
            label_count=label_count,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            metadata={"job_id": job_id, "mode": mode.value},
        )
        logger.error("Job %s failed (unexpected): %s\n%s", job_id, e, tb)


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------
def _pdf_renderer(client: LabelRenderClient, retries: int):
    """One PDF per batch; errors propagate so the whole batch counts as failed."""
    def render(batch: list[str]) -> list[Optional[bytes]]:
        return [client.render_pdf("\n".join(batch), max_retries=retries)]
    return render


def _png_renderer(client: LabelRenderClient, retries: int):
    """One PNG per label; a label the API rejects becomes ``None``."""
    def render(batch: list[str]) -> list[Optional[bytes]]:
        images: list[Optional[bytes]] = []
        for label in batch:
            try:
                images.append(client.render_png(label, max_retries=retries))
            except LabelApiError as e:
                logger.warning("Label render failed: %s", e)
                images.append(None)
        return images
    return render


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _assemble_batches(
    error_log: ErrorLog,
    job_id: str,
    numbers: list[int],
    labels: list[str],
    outcomes: list[BatchOutcome],
) -> tuple[bytes, int, list[int]]:
    """Merge per-batch PDFs; returns (pdf_bytes, labels_rendered, failed_numbers)."""
    pdfs: list[bytes] = []
    rendered = 0
    failed: list[int] = []
    for outcome in outcomes:
        batch = range(outcome.start, outcome.start + outcome.size)
        pdf = outcome.outputs[0] if outcome.success and outcome.outputs else None
        error = outcome.error
        if pdf and not pdf_page_count(pdf):
            pdf, error = None, "Renderer returned an unreadable PDF"
        status = "success" if pdf else "failed"
        for i in batch:
            error_log.log_label(
                job_id, numbers[i], labels[i], status, error_message=error,
            )
        if pdf:
            pdfs.append(pdf)
            rendered += outcome.size
        else:
            failed.extend(numbers[i] for i in batch)

    if not pdfs:
        raise PipelineError("No labels could be rendered.", ErrorType.API_ERROR)
    return merge_pdfs(pdfs), rendered, failed


def _upscale_images(images: list[Optional[bytes]]) -> list[Optional[bytes]]:
    """Upscale each image; one that cannot be decoded is kept as rendered."""
    upscaled: list[Optional[bytes]] = []
    for number, image in enumerate(images, start=1):
        if not image:
            upscaled.append(None)
            continue
        try:
            upscaled.append(upscale_png(image))
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("Upscaling image %d failed, keeping original: %s", number, e)
            upscaled.append(image)
    return upscaled


def _record_label_results(
    error_log: ErrorLog,
    job_id: str,
    numbers: list[int],
    labels: list[str],
    images: list[Optional[bytes]],
) -> None:
    for number, label, image in zip(numbers, labels, images):
        if image:
            error_log.log_label(job_id, number, label, "success")
        else:
            error_log.log_label(
                job_id, number, label, "failed", error_message="Renderer returned no image",
            )


def _log(manager: JobManager, job_id: str, message: str) -> None:
    logger.info("[%s] %s", job_id, message)
    manager.append_log(job_id, message)
