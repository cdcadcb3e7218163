"""Engine protocol and availability state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..types import PDFInfo
from ..utils import PathLike


@runtime_checkable
class PDFEngine(Protocol):
    """Capabilities every PDF engine backend provides.

    Engines are not assumed to be reentrant: adapters serialise their own
    calls. Failures surface as :class:`~pdfops.errors.PdfError`; from
    :meth:`decrypt` an ``ENCRYPTED`` kind means the password was wrong.
    """

    name: str

    def validate(self, path: PathLike, *, strict: bool = False) -> None:
        """Raise if *path* is not a usable PDF; *strict* rejects recoverable defects too."""

    def info(self, path: PathLike) -> PDFInfo:
        """Return the metadata and permission record for *path*."""

    def is_encrypted(self, path: PathLike) -> bool:
        """Return ``True`` when *path* needs a password."""

    def decrypt(self, source: PathLike, destination: PathLike, password: str) -> Path:
        """Write a decrypted copy of *source* to *destination*."""

    def merge(self, inputs: Sequence[PathLike], destination: PathLike) -> Path:
        """Concatenate *inputs* in order into *destination*."""

    def version(self) -> str:
        """Return the engine version string."""


class EngineState(Enum):
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class EngineStatus:
    """Engine availability, captured once at startup."""

    state: EngineState = EngineState.UNKNOWN
    engine: Optional[PDFEngine] = None
    version: str = ""
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.state is EngineState.AVAILABLE and self.engine is not None

    @property
    def engine_name(self) -> str:
        return self.engine.name if self.engine is not None else "none"

    @property
    def fallback_message(self) -> str:
        if self.available:
            return ""
        reason = f" ({self.error})" if self.error else ""
        return (
            "No PDF engine is available"
            f"{reason}. Install the pdfcpu command line tool or enable the pypdf library engine."
        )

    def __str__(self) -> str:
        if self.available:
            return f"EngineStatus({self.state.value}, {self.version})"
        return f"EngineStatus({self.state.value})"


__all__ = ["PDFEngine", "EngineState", "EngineStatus"]
