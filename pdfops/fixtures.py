"""
Deterministic synthetic PDFs for tests, demos and A/B workloads.

Every document is built with :class:`pypdf.PdfWriter` from blank pages, so
the same arguments always give a file with the same page count and metadata.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from pypdf import PdfWriter

from .utils import PathLike, ensure_path

PAGE_WIDTH = 200
PAGE_HEIGHT = 200


def _writer(pages: int, metadata: Optional[Dict[str, str]]) -> PdfWriter:
    if pages < 0:
        raise ValueError("pages must be non-negative")
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
    if metadata:
        writer.add_metadata(metadata)
    return writer


def _write(writer: PdfWriter, path: PathLike) -> Path:
    pdf_path = ensure_path(path)
    pdf_path.parent.mkdir(parents=True, exist_ok=True)
    with pdf_path.open("wb") as stream:
        writer.write(stream)
    return pdf_path


def blank_pdf(path: PathLike, pages: int = 1, *, title: Optional[str] = None, author: Optional[str] = None) -> Path:
    """Write a PDF of *pages* blank pages to *path*."""

    metadata = {"/Producer": "pdfops-fixtures"}
    if title is not None:
        metadata["/Title"] = title
    if author is not None:
        metadata["/Author"] = author
    return _write(_writer(pages, metadata), path)


def encrypted_pdf(
    path: PathLike,
    user_password: str,
    *,
    owner_password: Optional[str] = None,
    pages: int = 1,
    title: Optional[str] = None,
) -> Path:
    """Write a password protected PDF using the standard security handler."""

    metadata = {"/Producer": "pdfops-fixtures"}
    if title is not None:
        metadata["/Title"] = title
    writer = _writer(pages, metadata)
    writer.encrypt(user_password=user_password, owner_password=owner_password or user_password or "owner")
    return _write(writer, path)


def pdf_series(directory: PathLike, count: int, *, prefix: str = "doc", pages: int = 1) -> List[Path]:
    """Write *count* numbered PDFs (``doc_00.pdf``, ``doc_01.pdf``...) into *directory*."""

    folder = ensure_path(directory)
    return [
        blank_pdf(folder / f"{prefix}_{index:02d}.pdf", pages, title=f"{prefix} {index}")
        for index in range(count)
    ]


def corrupted_pdf(path: PathLike) -> Path:
    """Write a file with a PDF header and no parseable body."""

    pdf_path = ensure_path(path)
    pdf_path.parent.mkdir(parents=True, exist_ok=True)
    pdf_path.write_bytes(b"%PDF-1.7\n%broken\n1 0 obj\n<< /Type /Catalog\n")
    return pdf_path


__all__ = ["blank_pdf", "encrypted_pdf", "pdf_series", "corrupted_pdf"]
