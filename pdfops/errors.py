"""
Error taxonomy for pdfops.

Every failure surfaced by the library is a :class:`PdfError` tagged with an
:class:`ErrorKind`. The kind fixes whether the failure is worth retrying, how
severe it is, and the user-facing message shown for it.
"""

from __future__ import annotations

import subprocess
import threading
from enum import Enum
from typing import Iterable, List, Optional

from pypdf.errors import FileNotDecryptedError, PdfReadError, PdfStreamError, WrongPasswordError


class ErrorKind(Enum):
    """Kinds of failure a PDF operation can surface."""

    INVALID_FILE = "invalid_file"
    ENCRYPTED = "encrypted"
    CORRUPTED = "corrupted"
    PERMISSION = "permission"
    MEMORY = "memory"
    IO = "io"
    VALIDATION = "validation"
    PROCESSING = "processing"
    INVALID_INPUT = "invalid_input"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.MEMORY, ErrorKind.IO)

    @property
    def severity(self) -> str:
        return _SEVERITY.get(self, "unknown")

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self]


_SEVERITY = {
    ErrorKind.MEMORY: "high",
    ErrorKind.IO: "high",
    ErrorKind.PERMISSION: "medium",
    ErrorKind.CORRUPTED: "medium",
    ErrorKind.INVALID_FILE: "low",
    ErrorKind.ENCRYPTED: "low",
}

_LABELS = {
    ErrorKind.INVALID_FILE: "Invalid File",
    ErrorKind.ENCRYPTED: "Encrypted File",
    ErrorKind.CORRUPTED: "Corrupted File",
    ErrorKind.PERMISSION: "Permission Error",
    ErrorKind.MEMORY: "Memory Error",
    ErrorKind.IO: "IO Error",
    ErrorKind.VALIDATION: "Validation Error",
    ErrorKind.PROCESSING: "Processing Error",
    ErrorKind.INVALID_INPUT: "Invalid Input",
}

# User-facing messages, one per kind. Front-ends may swap this table for a
# translated one; the library only ever looks messages up through it.
USER_MESSAGES = {
    ErrorKind.INVALID_FILE: "The file is not a valid PDF or is damaged.",
    ErrorKind.ENCRYPTED: "The file is encrypted and needs a password.",
    ErrorKind.CORRUPTED: "The file is corrupted and cannot be processed.",
    ErrorKind.PERMISSION: "Access to the file was denied.",
    ErrorKind.MEMORY: "Not enough memory. Close other programs and try again.",
    ErrorKind.IO: "The file could not be read or written. Check disk space.",
    ErrorKind.VALIDATION: "The PDF failed validation.",
    ErrorKind.PROCESSING: "The PDF could not be processed.",
    ErrorKind.INVALID_INPUT: "The supplied arguments are invalid.",
}


class PdfError(Exception):
    """A typed PDF processing failure."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        file: Optional[str] = None,
        cause: Optional[BaseException] = None,
        *,
        interrupted: bool = False,
    ) -> None:
        self.kind = kind
        # Set for cancellation and deadline errors, which must never be retried.
        self.interrupted = interrupted
        self.message = message or kind.user_message
        self.file = str(file) if file is not None else None
        self.cause = cause
        super().__init__(self._format())
        if cause is not None:
            self.__cause__ = cause

    def _format(self) -> str:
        text = f"{self.kind.label}: {self.message}"
        if self.file:
            text += f" (file: {self.file})"
        if self.cause is not None:
            text += f": {self.cause}"
        return text

    @property
    def retryable(self) -> bool:
        return self.kind.retryable and not self.interrupted

    @property
    def severity(self) -> str:
        return self.kind.severity

    @property
    def user_message(self) -> str:
        return self.kind.user_message

    @property
    def detailed_message(self) -> str:
        if self.file:
            return f"{self.user_message} (file: {self.file})"
        return self.user_message

    def is_kind(self, *kinds: ErrorKind) -> bool:
        return self.kind in kinds

    def unwrap(self) -> Optional[BaseException]:
        return self.cause

    def __repr__(self) -> str:
        return f"PdfError(kind={self.kind.name}, message={self.message!r}, file={self.file!r})"


def cancelled_error(reason: str = "operation was cancelled", cause: Optional[BaseException] = None) -> PdfError:
    return PdfError(ErrorKind.IO, reason, cause=cause, interrupted=True)


def timeout_error(timeout: float, cause: Optional[BaseException] = None) -> PdfError:
    return PdfError(ErrorKind.IO, f"operation timed out after {timeout:g}s", cause=cause, interrupted=True)


_ENCRYPTION_HINTS = ("encrypt", "password", "decrypt")
_PERMISSION_HINTS = ("permission", "access denied", "not permitted")
_IO_HINTS = ("no such file", "not found", "i/o", "disk", "broken pipe", "timed out")
_CORRUPTION_HINTS = ("malformed", "corrupt", "invalid", "eof marker", "xref", "startxref", "trailer", "damaged")


def classify_error(exc: BaseException, file: Optional[str] = None) -> PdfError:
    """Convert *exc* into a :class:`PdfError` using the engine-boundary heuristic.

    Encryption or password hints map to ``ENCRYPTED``, permission hints to
    ``PERMISSION``, missing files and I/O faults to ``IO``, structurally bad
    input to ``CORRUPTED`` and anything else to ``PROCESSING``. A
    :class:`PdfError` is returned unchanged.
    """

    if isinstance(exc, PdfError):
        return exc

    text = str(exc).lower()

    if isinstance(exc, (FileNotDecryptedError, WrongPasswordError)):
        return PdfError(ErrorKind.ENCRYPTED, str(exc) or "password required", file, exc)
    if any(hint in text for hint in _ENCRYPTION_HINTS):
        return PdfError(ErrorKind.ENCRYPTED, str(exc), file, exc)
    if isinstance(exc, PermissionError) or any(hint in text for hint in _PERMISSION_HINTS):
        return PdfError(ErrorKind.PERMISSION, str(exc) or "access denied", file, exc)
    if isinstance(exc, MemoryError):
        return PdfError(ErrorKind.MEMORY, str(exc) or "out of memory", file, exc)
    if isinstance(exc, (OSError, subprocess.TimeoutExpired)):
        return PdfError(ErrorKind.IO, str(exc) or "I/O failure", file, exc)
    if isinstance(exc, (PdfReadError, PdfStreamError)):
        return PdfError(ErrorKind.CORRUPTED, str(exc) or "malformed PDF", file, exc)
    if any(hint in text for hint in _IO_HINTS):
        return PdfError(ErrorKind.IO, str(exc), file, exc)
    if any(hint in text for hint in _CORRUPTION_HINTS):
        return PdfError(ErrorKind.CORRUPTED, str(exc), file, exc)
    return PdfError(ErrorKind.PROCESSING, str(exc) or exc.__class__.__name__, file, exc)


class ErrorCollector:
    """Accumulates errors in insertion order for post-hoc diagnostics."""

    def __init__(self) -> None:
        self._errors: List[BaseException] = []
        self._lock = threading.Lock()

    def add(self, error: Optional[BaseException]) -> None:
        if error is None:
            return
        with self._lock:
            self._errors.append(error)

    def extend(self, errors: Iterable[Optional[BaseException]]) -> None:
        for error in errors:
            self.add(error)

    @property
    def has_errors(self) -> bool:
        return self.count > 0

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._errors)

    def errors(self) -> List[BaseException]:
        with self._lock:
            return list(self._errors)

    def summary(self) -> str:
        errors = self.errors()
        if not errors:
            return "No errors"
        lines = [f"{len(errors)} error(s) recorded:"]
        lines.extend(f"{index}. {error}" for index, error in enumerate(errors, start=1))
        return "\n".join(lines)

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()

    def __len__(self) -> int:
        return self.count

    def __contains__(self, error: object) -> bool:
        with self._lock:
            return any(existing is error for existing in self._errors)


__all__ = [
    "ErrorKind",
    "PdfError",
    "ErrorCollector",
    "USER_MESSAGES",
    "classify_error",
    "cancelled_error",
    "timeout_error",
]
