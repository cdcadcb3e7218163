"""
Engine-free structural checks and validation reports.

:func:`check_structure` reads only the file header and trailer, so it works
when no engine is available. :class:`ValidationReport` collects the outcome
of a full validation run together with advice for processing the file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from .errors import ErrorKind, PdfError
from .utils import PathLike, ensure_path

LOGGER = logging.getLogger("pdfops.validation")

SUPPORTED_VERSIONS = ("-1.0", "-1.1", "-1.2", "-1.3", "-1.4", "-1.5", "-1.6", "-1.7", "-2.0")

MIN_FILE_SIZE = 100
EOF_MARKER = b"%%EOF"
# The end-of-file marker must appear within this many trailing bytes.
EOF_WINDOW = 1024
LARGE_FILE_SIZE = 10 * 1024 * 1024


def check_structure(path: PathLike) -> None:
    """Raise a :class:`PdfError` unless *path* looks like a complete PDF.

    The header must start with ``%PDF`` followed by a supported version, the
    file must be at least :data:`MIN_FILE_SIZE` bytes long and ``%%EOF`` must
    appear in its last :data:`EOF_WINDOW` bytes.
    """

    pdf_path = ensure_path(path)
    LOGGER.debug("Checking PDF structure of %s", pdf_path)
    try:
        with pdf_path.open("rb") as handle:
            header = handle.read(8)
            size = os.fstat(handle.fileno()).st_size
            handle.seek(max(size - EOF_WINDOW, 0))
            tail = handle.read()
    except OSError as exc:
        raise PdfError(ErrorKind.IO, "cannot open file", str(pdf_path), exc) from exc

    if len(header) < 4:
        raise PdfError(ErrorKind.INVALID_FILE, "file is too small to be a PDF", str(pdf_path))
    if header[:4] != b"%PDF":
        raise PdfError(ErrorKind.INVALID_FILE, "file is not in PDF format", str(pdf_path))
    if len(header) == 8:
        version = header[4:8].decode("latin-1")
        if not version.startswith(SUPPORTED_VERSIONS):
            raise PdfError(ErrorKind.INVALID_FILE, f"unsupported PDF version: {version}", str(pdf_path))

    if size < MIN_FILE_SIZE:
        raise PdfError(ErrorKind.CORRUPTED, "file is truncated", str(pdf_path))
    if EOF_MARKER not in tail:
        raise PdfError(ErrorKind.CORRUPTED, "missing %%EOF marker", str(pdf_path))


def performance_tips(file_size: int, is_encrypted: bool) -> List[str]:
    tips = []
    if file_size > LARGE_FILE_SIZE:
        tips.append("Large file: merge it in batches or with streaming merge")
    if is_encrypted:
        tips.append("Encrypted file: decrypt it before merging for better performance")
    return tips


@dataclass
class ValidationReport:
    """Outcome of validating one file.

    ``details`` carries ``page_count``, ``file_size``, ``is_encrypted`` and
    ``title`` when they could be read.
    """

    path: str
    is_valid: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    performance_tips: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "details": dict(self.details),
            "performance_tips": list(self.performance_tips),
            "generated_at": self.generated_at.isoformat(),
        }


__all__ = [
    "SUPPORTED_VERSIONS",
    "ValidationReport",
    "check_structure",
    "performance_tips",
]
