"""PDF assembly – A4 2x2 sheets, one-label-per-page HD output, merging."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger("zpl.pdf")

# A4 sheet, millimetres
A4_WIDTH = 210.0
A4_HEIGHT = 297.0
A4_LABEL_WIDTH = 95.0
A4_LABEL_HEIGHT = 140.0
LABELS_PER_PAGE = 4

# 4x6 inch label page
LABEL_PAGE_WIDTH = 101.6
LABEL_PAGE_HEIGHT = 152.4

JPEG_QUALITY = 85
UPSCALE_FACTOR = 2


@dataclass(frozen=True)
class Placement:
    label_number: int  # 1-based position in the input
    page: int  # 0-based
    slot: int  # 0..3, row-major
    x: float  # mm from the left edge
    y: float  # mm from the top edge
    width: float
    height: float


def a4_slot_positions() -> list[tuple[float, float]]:
    """Top-left corners of the four 2x2 slots, with equal gaps on each axis."""
    margin_x = (A4_WIDTH - A4_LABEL_WIDTH * 2) / 3
    margin_y = (A4_HEIGHT - A4_LABEL_HEIGHT * 2) / 3
    left, right = margin_x, margin_x * 2 + A4_LABEL_WIDTH
    top, bottom = margin_y, margin_y * 2 + A4_LABEL_HEIGHT
    return [(left, top), (right, top), (left, bottom), (right, bottom)]


def plan_a4_layout(images: list[Optional[bytes]]) -> tuple[list[Placement], list[int]]:
    """Assign each usable image to a page and slot.

    Empty or missing images are reported by 1-based number and take no slot,
    so every page except the last holds exactly four labels.
    """
    positions = a4_slot_positions()
    placements: list[Placement] = []
    failed: list[int] = []

    for number, image in enumerate(images, start=1):
        if not image:
            logger.error("Label %d: invalid/empty image", number)
            failed.append(number)
            continue
        added = len(placements)
        page, slot = divmod(added, LABELS_PER_PAGE)
        x, y = positions[slot]
        placements.append(
            Placement(number, page, slot, x, y, A4_LABEL_WIDTH, A4_LABEL_HEIGHT)
        )
    return placements, failed


def render_a4_pdf(images: list[Optional[bytes]]) -> tuple[bytes, int, list[int]]:
    """Lay label images out four to an A4 page.

    Returns (pdf_bytes, labels_added, failed_labels).
    """
    logger.info("A4 PDF generation start: %d input images", len(images))
    prepared = _prepare_images(images)
    placements, failed = plan_a4_layout(prepared)

    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=(A4_WIDTH * mm, A4_HEIGHT * mm))
    _draw_placements(pdf, placements, prepared, A4_HEIGHT)
    pdf.save()

    pages = (len(placements) + LABELS_PER_PAGE - 1) // LABELS_PER_PAGE
    _log_summary("A4", len(images), len(placements), pages, failed)
    return buf.getvalue(), len(placements), failed


def render_label_pages_pdf(images: list[Optional[bytes]]) -> tuple[bytes, int, list[int]]:
    """One label per 4x6 inch page, image filling the page."""
    logger.info("HD PDF generation start: %d input images", len(images))
    prepared = _prepare_images(images)
    placements: list[Placement] = []
    failed: list[int] = []
    for number, image in enumerate(prepared, start=1):
        if not image:
            logger.error("Label %d: invalid/empty image", number)
            failed.append(number)
            continue
        placements.append(
            Placement(number, len(placements), 0, 0.0, 0.0, LABEL_PAGE_WIDTH, LABEL_PAGE_HEIGHT)
        )

    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=(LABEL_PAGE_WIDTH * mm, LABEL_PAGE_HEIGHT * mm))
    _draw_placements(pdf, placements, prepared, LABEL_PAGE_HEIGHT)
    pdf.save()

    _log_summary("HD", len(images), len(placements), len(placements), failed)
    return buf.getvalue(), len(placements), failed


def upscale_png(png: bytes, factor: int = UPSCALE_FACTOR) -> bytes:
    """Nearest-neighbour upscaling keeps barcode edges sharp."""
    with Image.open(io.BytesIO(png)) as img:
        upscaled = img.resize(
            (img.width * factor, img.height * factor), Image.Resampling.NEAREST,
        )
    out = io.BytesIO()
    upscaled.save(out, format="PNG")
    return out.getvalue()


def pdf_page_count(data: bytes) -> int:
    """Number of pages in ``data``; 0 when it is not a readable PDF."""
    try:
        return len(PdfReader(io.BytesIO(data)).pages)
    except PdfReadError as e:
        logger.error("Unreadable PDF (%d bytes): %s", len(data), e)
        return 0


def merge_pdfs(pdfs: list[bytes]) -> bytes:
    """Concatenate PDFs; unreadable inputs are skipped."""
    if not pdfs:
        raise ValueError("No PDFs to merge")
    if len(pdfs) == 1:
        if not pdf_page_count(pdfs[0]):
            raise ValueError("None of the PDFs could be read")
        return pdfs[0]

    writer = PdfWriter()
    for i, data in enumerate(pdfs, start=1):
        try:
            writer.append(PdfReader(io.BytesIO(data)))
        except PdfReadError as e:
            logger.error("Skipping unreadable PDF %d/%d: %s", i, len(pdfs), e)

    if not writer.pages:
        raise ValueError("None of the PDFs could be read")
    out = io.BytesIO()
    writer.write(out)
    logger.info("Merged %d PDFs into %d pages", len(pdfs), len(writer.pages))
    return out.getvalue()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def _prepare_images(images: list[Optional[bytes]]) -> list[Optional[bytes]]:
    """Re-encode PNGs as JPEG; images that fail to decode become None."""
    prepared: list[Optional[bytes]] = []
    for number, image in enumerate(images, start=1):
        if not image:
            prepared.append(None)
            continue
        try:
            prepared.append(_to_jpeg(image))
        except (UnidentifiedImageError, OSError) as e:
            logger.error("Label %d: failed to decode image: %s", number, e)
            prepared.append(None)
    return prepared


def _to_jpeg(image: bytes) -> bytes:
    with Image.open(io.BytesIO(image)) as img:
        rgb = img.convert("RGB")
    out = io.BytesIO()
    rgb.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()


def _draw_placements(
    pdf: canvas.Canvas,
    placements: list[Placement],
    images: list[Optional[bytes]],
    page_height: float,
) -> None:
    current_page = 0
    for p in placements:
        if p.page != current_page:
            pdf.showPage()
            current_page = p.page
        # ReportLab's origin is bottom-left
        pdf.drawImage(
            ImageReader(io.BytesIO(images[p.label_number - 1])),
            p.x * mm,
            (page_height - p.y - p.height) * mm,
            width=p.width * mm,
            height=p.height * mm,
        )
        logger.debug("Added label %d to page %d slot %d", p.label_number, p.page + 1, p.slot + 1)


def _log_summary(kind: str, total: int, added: int, pages: int, failed: list[int]) -> None:
    logger.info("%s PDF summary: input=%d added=%d pages=%d", kind, total, added, pages)
    if failed:
        logger.error("FAILED labels: %s (%d lost in PDF generation)", failed, len(failed))
