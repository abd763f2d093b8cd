"""End-to-end pipeline tests with a fake label renderer."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from pypdf import PdfReader

import config
from models import ConversionMode, JobStatus
from services.error_log import ErrorLog
from services.history_store import HistoryStore
from services.job_manager import JobManager
from services.pipeline import run_pipeline

from conftest import FakeRenderClient


class JunkPdfClient(FakeRenderClient):
    """Answers batches containing ``JUNK`` with a body that is not a PDF."""

    def render_pdf(self, zpl, max_retries=None):
        if "JUNK" in zpl:
            self.pdf_calls.append(zpl)
            return b"x" * 600
        return super().render_pdf(zpl, max_retries)


class JunkPngClient(FakeRenderClient):
    def render_png(self, zpl, max_retries=None):
        if "JUNK" in zpl:
            self.png_calls.append(zpl)
            return b"\x89PNG not really an image"
        return super().render_png(zpl, max_retries)


@pytest.fixture
def env(db_path: Path):
    return JobManager(db_path), HistoryStore(db_path, config.STORAGE_DIR), ErrorLog(db_path)


def _run(env, tmp_path: Path, zpl: str, mode: ConversionMode, client) -> dict:
    manager, history, error_log = env
    zpl_path = tmp_path / "input.zpl"
    zpl_path.write_text(zpl, encoding="utf-8")
    job_id = manager.create_job(str(zpl_path), mode=mode)
    job = manager.next_queued_job()
    run_pipeline(job, manager, history, error_log, client=client, sleep=lambda s: None)
    return manager.get_job(job_id)


def _pages(path: str) -> int:
    return len(PdfReader(io.BytesIO(Path(path).read_bytes())).pages)


# =========================================================================
# 1. Successful conversions
# =========================================================================


class TestStandardMode:
    def test_converts_and_records_history(self, env, tmp_path, label, fake_client):
        zpl = label("a") + "^XA^FS^XZ" + label("b") + label("c")
        job = _run(env, tmp_path, zpl, ConversionMode.STANDARD, fake_client)

        assert job["status"] == JobStatus.DONE.value
        assert job["progress"] == 100
        assert job["label_count"] == 3
        assert _pages(job["output_path"]) == 3
        assert "✅ Conversion complete" in job["logs"]

        rows, total = env[1].list_records()
        assert total == 1
        assert rows[0]["label_count"] == 3
        assert rows[0]["processing_type"] == "standard"
        assert env[1].resolve_path(rows[0]["pdf_path"]) == Path(job["output_path"]).resolve()

    def test_label_logs_use_input_positions(self, env, tmp_path, label, fake_client):
        zpl = label("a") + "^XA^FS^XZ" + label("b")
        job = _run(env, tmp_path, zpl, ConversionMode.STANDARD, fake_client)

        logs = {row["label_number"]: row["status"] for row in env[2].label_logs(job["id"])}
        assert logs == {1: "success", 2: "skipped", 3: "success"}

    def test_large_input_is_batched(self, env, tmp_path, label, fake_client):
        zpl = "".join(label(i) for i in range(120))
        job = _run(env, tmp_path, zpl, ConversionMode.STANDARD, fake_client)

        assert len(fake_client.pdf_calls) == 3
        assert _pages(job["output_path"]) == 120

    def test_fast_mode_is_recorded_as_standard(self, env, tmp_path, label, fake_client):
        _run(env, tmp_path, label("a"), ConversionMode.FAST, fake_client)
        rows, _ = env[1].list_records()
        assert rows[0]["processing_type"] == "standard"

    def test_mode_retry_limit_reaches_renderer(self, env, tmp_path, label, fake_client):
        _run(env, tmp_path, label("a") + label("b"), ConversionMode.FAST, fake_client)
        assert fake_client.retries == [2]

    def test_failed_batch_is_left_out(self, env, tmp_path, label, fake_client):
        labels = [label(i) for i in range(50)] + [label("FAIL")]
        job = _run(env, tmp_path, "".join(labels), ConversionMode.STANDARD, fake_client)

        assert job["status"] == JobStatus.DONE.value
        assert job["label_count"] == 50
        assert "failed to render: [51]" in job["logs"]

    def test_unreadable_batch_pdf_is_left_out(self, env, tmp_path, label):
        labels = [label(i) for i in range(50)] + [label("JUNK")]
        job = _run(env, tmp_path, "".join(labels), ConversionMode.STANDARD, JunkPdfClient())

        assert job["status"] == JobStatus.DONE.value
        assert job["label_count"] == 50
        assert _pages(job["output_path"]) == 50
        assert "failed to render: [51]" in job["logs"]

        logs = {row["label_number"]: row for row in env[2].label_logs(job["id"])}
        assert logs[50]["status"] == "success"
        assert logs[51]["status"] == "failed"
        assert logs[51]["error_message"] == "Renderer returned an unreadable PDF"


class TestSheetModes:
    def test_a4_packs_four_per_page(self, env, tmp_path, label, fake_client):
        zpl = "".join(label(i) for i in range(5))
        job = _run(env, tmp_path, zpl, ConversionMode.A4, fake_client)

        assert job["status"] == JobStatus.DONE.value
        assert _pages(job["output_path"]) == 2
        assert len(fake_client.png_calls) == 5

    def test_hd_one_page_per_label_skipping_failures(self, env, tmp_path, label, fake_client):
        zpl = label("a") + label("FAIL") + label("c")
        job = _run(env, tmp_path, zpl, ConversionMode.HD, fake_client)

        assert job["status"] == JobStatus.DONE.value
        assert job["label_count"] == 2
        assert _pages(job["output_path"]) == 2
        rows, _ = env[1].list_records(type_filter="a4")
        assert rows[0]["processing_type"] == "hd"

        statuses = [row["status"] for row in env[2].label_logs(job["id"])]
        assert statuses == ["success", "failed", "success"]

    def test_hd_keeps_going_when_an_image_cannot_be_upscaled(self, env, tmp_path, label):
        zpl = label("a") + label("JUNK") + label("c")
        job = _run(env, tmp_path, zpl, ConversionMode.HD, JunkPngClient())

        assert job["status"] == JobStatus.DONE.value
        assert job["label_count"] == 2
        assert _pages(job["output_path"]) == 2
        assert "failed to render: [2]" in job["logs"]


# =========================================================================
# 2. Failures
# =========================================================================


class TestFailures:
    def test_no_valid_labels(self, env, tmp_path, fake_client):
        job = _run(env, tmp_path, "^XA^FS^XZ^XA ^XZ", ConversionMode.STANDARD, fake_client)

        assert job["status"] == JobStatus.FAILED.value
        assert job["error"] == "No valid ZPL labels found."
        errors = env[2].recent_errors()
        assert errors[0]["error_type"] == "validation_error"
        assert errors[0]["metadata"]["job_id"] == job["id"]
        assert fake_client.pdf_calls == []

    def test_nothing_rendered(self, env, tmp_path, label, fake_client):
        job = _run(env, tmp_path, label("FAIL"), ConversionMode.STANDARD, fake_client)

    def test_single_unreadable_pdf_fails_job(self, env, tmp_path, label):
        job = _run(env, tmp_path, label("JUNK"), ConversionMode.STANDARD, JunkPdfClient())

        assert job["status"] == JobStatus.FAILED.value
        assert job["output_path"] is None
        assert env[2].recent_errors()[0]["error_type"] == "api_error"
        assert env[1].list_records()[1] == 0

        assert job["status"] == JobStatus.FAILED.value
        assert env[2].recent_errors()[0]["error_type"] == "api_error"
        assert env[1].list_records()[1] == 0

    def test_missing_upload(self, env, fake_client):
        manager, history, error_log = env
        job_id = manager.create_job("/nonexistent/input.zpl")
        run_pipeline(manager.next_queued_job(), manager, history, error_log, client=fake_client)

        assert manager.get_job(job_id)["status"] == JobStatus.FAILED.value
        assert error_log.recent_errors()[0]["error_type"] == "upload_error"

    def test_renderer_crash_fails_batch(self, env, tmp_path, label):
        class BrokenClient:
            def render_png(self, zpl, max_retries=None):
                raise KeyError("boom")

        job = _run(env, tmp_path, label("a"), ConversionMode.A4, BrokenClient())

        assert job["status"] == JobStatus.FAILED.value
        assert env[2].recent_errors()[0]["error_type"] == "api_error"

    def test_unexpected_error_keeps_traceback(self, env, tmp_path, label, fake_client, monkeypatch):
        def broken_layout(images):
            raise RuntimeError("layout broke")

        monkeypatch.setattr("services.pipeline.render_a4_pdf", broken_layout)
        job = _run(env, tmp_path, label("a"), ConversionMode.A4, fake_client)

        assert job["status"] == JobStatus.FAILED.value
        assert job["error"] == "layout broke"
        error = env[2].recent_errors()[0]
        assert error["error_type"] == "conversion_error"
        assert "RuntimeError" in error["error_stack"]
