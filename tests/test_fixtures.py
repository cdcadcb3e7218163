from __future__ import annotations

from pathlib import Path

import pytest
from pypdf import PdfReader

from pdfops.engines import PypdfEngine
from pdfops.errors import ErrorKind, PdfError
from pdfops.fixtures import blank_pdf, corrupted_pdf, encrypted_pdf, pdf_series


def test_blank_pdf(tmp_path: Path) -> None:
    path = blank_pdf(tmp_path / "nested" / "blank.pdf", 4, title="Blank", author="Fixtures")

    reader = PdfReader(str(path))
    assert len(reader.pages) == 4
    assert reader.metadata.get("/Title") == "Blank"
    assert reader.metadata.get("/Author") == "Fixtures"
    assert reader.metadata.get("/Producer") == "pdfops-fixtures"


def test_blank_pdf_rejects_negative_pages(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        blank_pdf(tmp_path / "bad.pdf", -1)


def test_encrypted_pdf_opens_with_user_password(tmp_path: Path) -> None:
    path = encrypted_pdf(tmp_path / "locked.pdf", "pw", pages=3, title="Locked")

    reader = PdfReader(str(path))
    assert reader.is_encrypted
    assert reader.decrypt("wrong") == 0
    assert reader.decrypt("pw") != 0
    assert len(reader.pages) == 3


def test_pdf_series(tmp_path: Path) -> None:
    paths = pdf_series(tmp_path / "series", 3, prefix="part", pages=2)

    assert [path.name for path in paths] == ["part_00.pdf", "part_01.pdf", "part_02.pdf"]
    assert all(len(PdfReader(str(path)).pages) == 2 for path in paths)
    assert PdfReader(str(paths[1])).metadata.get("/Title") == "part 1"


def test_corrupted_pdf_fails_validation(tmp_path: Path) -> None:
    path = corrupted_pdf(tmp_path / "broken.pdf")

    assert path.read_bytes().startswith(b"%PDF-")
    with pytest.raises(PdfError) as excinfo:
        PypdfEngine().validate(path)
    assert excinfo.value.kind in {ErrorKind.CORRUPTED, ErrorKind.INVALID_FILE}
