"""Shared fixtures for the converter test suite.

Storage and database paths are pointed at a throwaway directory before any
application module imports ``config``. The label rendering API is replaced
by an in-process fake that builds real PNGs and PDFs.
"""

from __future__ import annotations

import io
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="zpl-tests-"))
os.environ["ZPL_STORAGE_DIR"] = str(_TEST_ROOT / "storage")
os.environ["ZPL_DATABASE_PATH"] = str(_TEST_ROOT / "app.db")

import pytest  # noqa: E402
from PIL import Image, ImageDraw  # noqa: E402
from reportlab.pdfgen import canvas  # noqa: E402

from services.database import init_db  # noqa: E402
from services.label_renderer import LabelApiError  # noqa: E402

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)

LABEL = "^XA^FO50,50^A0N,40,40^FD{}^FS^XZ"


def make_png(width: int = 40, height: int = 60) -> bytes:
    img = Image.new("L", (width, height), 255)
    ImageDraw.Draw(img).rectangle([5, 5, width - 5, height // 2], fill=0)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def make_pdf(pages: int = 1) -> bytes:
    out = io.BytesIO()
    pdf = canvas.Canvas(out, pagesize=(288, 432))
    for i in range(pages):
        pdf.drawString(72, 216, f"label {i + 1}")
        pdf.showPage()
    pdf.save()
    return out.getvalue()


class FakeRenderClient:
    """Stands in for LabelRenderClient; labels containing ``FAIL`` are rejected."""

    fail_marker = "FAIL"

    def __init__(self) -> None:
        self.pdf_calls: list[str] = []
        self.png_calls: list[str] = []
        self.retries: list[Optional[int]] = []

    def render_pdf(self, zpl: str, max_retries: Optional[int] = None) -> bytes:
        self.pdf_calls.append(zpl)
        self.retries.append(max_retries)
        if self.fail_marker in zpl:
            raise LabelApiError("API error 400: bad label", status_code=400)
        return make_pdf(zpl.count("^XA"))

    def render_png(self, zpl: str, max_retries: Optional[int] = None) -> bytes:
        self.png_calls.append(zpl)
        self.retries.append(max_retries)
        if self.fail_marker in zpl:
            raise LabelApiError("API error 400: bad label", status_code=400)
        return make_png()


@pytest.fixture
def label():
    """Factory for a valid single-label ZPL string."""
    return LABEL.format


@pytest.fixture
def png():
    return make_png


@pytest.fixture
def pdf():
    return make_pdf


@pytest.fixture
def fake_client() -> FakeRenderClient:
    return FakeRenderClient()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "test.db"
    init_db(path)
    return path
