"""ZPL parsing – label splitting, validation and upload extraction."""

from __future__ import annotations

import io
import logging
import re
import zipfile

logger = logging.getLogger("zpl.parser")

LABEL_START = "^XA"
LABEL_END = "^XZ"
MIN_LABEL_LENGTH = 15

# Shapes that the renderer accepts but that produce no visible label
_EMPTY_LABEL_PATTERNS = [
    re.compile(r"^\^XA\^IDR:"),  # only deletes stored graphics
    re.compile(r"^\^XA\^FS\^XZ$"),
    re.compile(r"^\^XA\s*\^XZ$"),
]

ZIP_MEMBER_SUFFIXES = (".zpl", ".txt")


class ZplInputError(ValueError):
    """Raised when uploaded content holds no usable ZPL."""


def split_zpl_into_labels(zpl_content: str) -> list[str]:
    """Split a ZPL document into ``^XA...^XZ`` labels.

    Fragments between ``^XZ`` markers that carry no ``^XA`` are dropped.
    """
    normalized = zpl_content.strip().replace("\r\n", "\n")
    labels = []
    for block in normalized.split(LABEL_END):
        block = block.strip()
        if LABEL_START in block:
            labels.append(f"{block}{LABEL_END}")
    logger.debug("Found %d ZPL labels", len(labels))
    return labels


def count_labels(zpl_content: str) -> int:
    return len(split_zpl_into_labels(zpl_content))


def validate_label(label: str) -> bool:
    """Return False for labels that would render blank or fail outright."""
    trimmed = label.strip()
    if not trimmed:
        return False
    if LABEL_START not in trimmed or LABEL_END not in trimmed:
        return False
    for pattern in _EMPTY_LABEL_PATTERNS:
        if pattern.search(trimmed):
            logger.info("Invalid ZPL pattern detected: %.50s", trimmed)
            return False
    if len(trimmed) < MIN_LABEL_LENGTH:
        logger.info("ZPL too short: %s", trimmed)
        return False
    return True


def filter_valid_labels(labels: list[str]) -> tuple[list[str], list[int]]:
    """Split labels into valid ones and the 1-based numbers of invalid ones."""
    valid: list[str] = []
    invalid: list[int] = []
    for number, label in enumerate(labels, start=1):
        if validate_label(label):
            valid.append(label)
        else:
            invalid.append(number)
    logger.info("ZPL validation: %d valid, %d invalid labels", len(valid), len(invalid))
    return valid, invalid


def preview(zpl_content: str) -> dict:
    labels = split_zpl_into_labels(zpl_content)
    valid, invalid = filter_valid_labels(labels)
    return {
        "total": len(labels),
        "valid": len(valid),
        "invalid": len(invalid),
        "invalid_labels": invalid,
    }


def extract_zpl(filename: str, content: bytes) -> str:
    """Return the ZPL text carried by an uploaded file.

    ZIP archives contribute every ``.zpl``/``.txt`` member that contains
    both label markers, joined by newlines.
    """
    if filename.lower().endswith(".zip"):
        return _extract_from_zip(content)
    text = content.decode("utf-8", errors="replace")
    if LABEL_START not in text:
        raise ZplInputError("File does not contain ZPL labels.")
    return text


def _extract_from_zip(content: bytes) -> str:
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise ZplInputError(f"Invalid ZIP archive: {e}") from e

    with archive:
        members = [
            name for name in archive.namelist()
            if name.lower().endswith(ZIP_MEMBER_SUFFIXES)
        ]
        if not members:
            raise ZplInputError("No .zpl or .txt files found in ZIP archive.")

        contents = []
        for name in members:
            text = archive.read(name).decode("utf-8", errors="replace")
            if LABEL_START in text and LABEL_END in text:
                contents.append(text)

    if not contents:
        raise ZplInputError("ZIP archive contains no valid ZPL content.")
    logger.info("Extracted ZPL from %d of %d ZIP members", len(contents), len(members))
    return "\n".join(contents)
