"""Tests for ZPL splitting, validation and upload extraction."""

from __future__ import annotations

import io
import zipfile

import pytest

from services.zpl_parser import (
    ZplInputError,
    count_labels,
    extract_zpl,
    filter_valid_labels,
    preview,
    split_zpl_into_labels,
    validate_label,
)


def _zip(members: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in members.items():
            zf.writestr(name, text)
    return buf.getvalue()


# =========================================================================
# 1. Splitting
# =========================================================================


class TestSplitZplIntoLabels:
    def test_splits_on_end_marker(self, label):
        text = label("one") + "\r\n" + label("two") + "\n" + label("three")
        labels = split_zpl_into_labels(text)
        assert len(labels) == 3
        assert all(l.startswith("^XA") and l.endswith("^XZ") for l in labels)
        assert "one" in labels[0] and "three" in labels[2]

    def test_drops_fragments_without_start_marker(self, label):
        text = "^FDstray^FS^XZ" + label("kept") + "trailing junk"
        labels = split_zpl_into_labels(text)
        assert labels == [label("kept")]

    def test_empty_input(self):
        assert split_zpl_into_labels("") == []
        assert split_zpl_into_labels("   \n ") == []

    def test_normalises_windows_newlines(self):
        labels = split_zpl_into_labels("^XA\r\n^FDx^FS\r\n^XZ")
        assert labels == ["^XA\n^FDx^FS^XZ"]

    def test_count_matches_split(self, label):
        text = "".join(label(i) for i in range(7))
        assert count_labels(text) == 7


# =========================================================================
# 2. Validation
# =========================================================================


class TestValidateLabel:
    def test_accepts_real_label(self, label):
        assert validate_label(label("hello")) is True

    @pytest.mark.parametrize(
        "zpl",
        [
            "",
            "^XA^FS^XZ",
            "^XA ^XZ",
            "^XA^IDR:LOGO.GRF^FS^XZ",
            "^XA^FDabc^XZ",  # shorter than 15 characters
            "^FO50,50^FDno markers^FS",
        ],
    )
    def test_rejects_blank_or_broken(self, zpl):
        assert validate_label(zpl) is False

    def test_filter_reports_one_based_positions(self, label):
        labels = [label("a"), "^XA^FS^XZ", label("b"), "^XA ^XZ"]
        valid, invalid = filter_valid_labels(labels)
        assert valid == [label("a"), label("b")]
        assert invalid == [2, 4]

    def test_preview_counts(self, label):
        text = label("a") + "^XA^FS^XZ" + label("b")
        assert preview(text) == {"total": 3, "valid": 2, "invalid": 1, "invalid_labels": [2]}


# =========================================================================
# 3. Upload extraction
# =========================================================================


class TestExtractZpl:
    def test_plain_text(self, label):
        content = label("x").encode()
        assert extract_zpl("labels.zpl", content) == label("x")

    def test_plain_text_without_labels_raises(self):
        with pytest.raises(ZplInputError):
            extract_zpl("notes.txt", b"just some text")

    def test_zip_keeps_members_with_both_markers(self, label):
        content = _zip({
            "a.zpl": label("a"),
            "b.txt": "no labels here",
            "c.TXT": label("c"),
            "image.png": label("ignored"),
        })
        text = extract_zpl("batch.ZIP", content)
        assert split_zpl_into_labels(text) == [label("a"), label("c")]

    def test_zip_without_text_members_raises(self, label):
        with pytest.raises(ZplInputError, match="No .zpl or .txt"):
            extract_zpl("batch.zip", _zip({"a.pdf": label("a")}))

    def test_zip_without_valid_content_raises(self):
        with pytest.raises(ZplInputError, match="no valid ZPL"):
            extract_zpl("batch.zip", _zip({"a.zpl": "^XA only start"}))

    def test_corrupt_zip_raises(self):
        with pytest.raises(ZplInputError, match="Invalid ZIP"):
            extract_zpl("batch.zip", b"PK not really a zip")
