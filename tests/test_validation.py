from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from pdfops.errors import ErrorKind, PdfError
from pdfops.fixtures import corrupted_pdf
from pdfops.validation import SUPPORTED_VERSIONS, ValidationReport, check_structure, performance_tips

PADDING = b"% padding\n" * 20


def write(tmp_path: Path, content: bytes, name: str = "doc.pdf") -> Path:
    path = tmp_path / name
    path.write_bytes(content)
    return path


def test_generated_pdf_passes(sample_pdf: Path) -> None:
    check_structure(sample_pdf)


@pytest.mark.parametrize("version", SUPPORTED_VERSIONS)
def test_every_supported_version_passes(tmp_path: Path, version: str) -> None:
    path = write(tmp_path, b"%PDF" + version.encode() + b"\n" + PADDING + b"%%EOF\n")
    check_structure(path)


@pytest.mark.parametrize(
    ("content", "kind", "message"),
    [
        (b"%P", ErrorKind.INVALID_FILE, "too small"),
        (b"hello, this is plain text\n" + PADDING, ErrorKind.INVALID_FILE, "not in PDF format"),
        (b"%PDF-3.0\n" + PADDING + b"%%EOF\n", ErrorKind.INVALID_FILE, "unsupported PDF version: -3.0"),
        (b"%PDF-1.7\n%%EOF\n", ErrorKind.CORRUPTED, "truncated"),
        (b"%PDF-1.4\n" + PADDING, ErrorKind.CORRUPTED, "%%EOF"),
    ],
)
def test_structural_defects(tmp_path: Path, content: bytes, kind: ErrorKind, message: str) -> None:
    path = write(tmp_path, content)

    with pytest.raises(PdfError) as excinfo:
        check_structure(path)

    assert excinfo.value.kind is kind
    assert message in excinfo.value.message
    assert excinfo.value.file == str(path.resolve())


def test_eof_marker_must_be_near_the_end(tmp_path: Path) -> None:
    path = write(tmp_path, b"%PDF-1.7\n%%EOF\n" + b" " * 2000)

    with pytest.raises(PdfError) as excinfo:
        check_structure(path)
    assert excinfo.value.kind is ErrorKind.CORRUPTED


def test_missing_file_is_io_error(tmp_path: Path) -> None:
    with pytest.raises(PdfError) as excinfo:
        check_structure(tmp_path / "missing.pdf")
    assert excinfo.value.kind is ErrorKind.IO


def test_corrupted_fixture_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(PdfError):
        check_structure(corrupted_pdf(tmp_path / "broken.pdf"))


def test_performance_tips() -> None:
    assert performance_tips(1024, False) == []
    tips = performance_tips(11 * 1024 * 1024, True)
    assert len(tips) == 2
    assert "streaming merge" in tips[0]
    assert "decrypt" in tips[1]


def test_report_to_dict() -> None:
    report = ValidationReport(path="a.pdf", generated_at=datetime(2024, 5, 1, 12, 0))
    report.errors.append("bad")
    report.details["page_count"] = 2

    assert report.to_dict() == {
        "path": "a.pdf",
        "is_valid": False,
        "errors": ["bad"],
        "warnings": [],
        "details": {"page_count": 2},
        "performance_tips": [],
        "generated_at": "2024-05-01T12:00:00",
    }
