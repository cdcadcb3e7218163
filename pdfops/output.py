"""Output path resolution with collision handling and pre-write backups."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import ErrorKind, PdfError, classify_error
from .types import OutputInfo
from .utils import PathLike, copy_file, ensure_path, remove_quietly

LOGGER = logging.getLogger("pdfops.output")

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
MAX_INCREMENT = 9999


def _with_suffix(path: Path, suffix: str) -> Path:
    return path.with_name(f"{path.stem}_{suffix}{path.suffix}")


def ensure_directory_writable(directory: PathLike) -> Path:
    """Create *directory* (mode 0755) if needed and prove it accepts new files."""

    target = ensure_path(directory)
    try:
        target.mkdir(mode=0o755, parents=True, exist_ok=True)
        probe = target / f".write_test_{os.getpid()}_{datetime.now():%Y%m%d%H%M%S%f}"
        probe.touch()
        probe.unlink()
    except OSError as exc:
        LOGGER.error("Output directory %s is not writable: %s", target, exc)
        raise PdfError(ErrorKind.PERMISSION, "output directory is not writable", str(target), exc) from exc
    return target


class OutputManager:
    """Resolve where a write-producing operation should put its result.

    Args:
        output_dir: Base directory for relative and empty paths.
        default_filename: Name used when the caller supplies no path.
        auto_increment: Pick ``<stem>_N.pdf`` when the target exists.
        timestamp_suffix: Append ``_YYYYMMDD_HHMMSS`` before the extension.
        enable_backup: Report a backup path when the final target exists.
    """

    def __init__(
        self,
        output_dir: PathLike = ".",
        default_filename: str = "merged_output.pdf",
        *,
        auto_increment: bool = True,
        timestamp_suffix: bool = False,
        enable_backup: bool = True,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._check_extension(default_filename)
        self.output_dir = Path(output_dir)
        self.default_filename = default_filename
        self.auto_increment = auto_increment
        self.timestamp_suffix = timestamp_suffix
        self.enable_backup = enable_backup
        self._now = now

    @staticmethod
    def _check_extension(path: PathLike) -> None:
        if not str(path).lower().endswith(".pdf"):
            raise PdfError(ErrorKind.INVALID_FILE, "output file must be a PDF", str(path))

    def validate(self, path: PathLike) -> Path:
        """Refuse non-PDF names and make sure the parent directory is writable."""

        target = ensure_path(path)
        self._check_extension(target)
        ensure_directory_writable(target.parent)
        return target

    def resolve(self, requested: Optional[PathLike] = None) -> OutputInfo:
        original = Path(requested or self.default_filename)
        candidate = original
        if not candidate.is_absolute():
            candidate = self.output_dir / candidate
        candidate = self.validate(candidate)

        has_timestamp = False
        if self.timestamp_suffix:
            candidate = _with_suffix(candidate, self._now().strftime(TIMESTAMP_FORMAT))
            has_timestamp = True

        incremented = False
        if self.auto_increment:
            candidate, incremented = self._next_free(candidate)

        backup = None
        if self.enable_backup and candidate.exists():
            backup = self.backup_path(candidate)

        info = OutputInfo(
            final_path=candidate,
            original_path=original,
            backup_path=backup,
            is_incremented=incremented,
            has_timestamp=has_timestamp,
        )
        LOGGER.debug("Resolved output %s -> %s", original, candidate)
        return info

    def resolve_path(self, requested: Optional[PathLike] = None) -> Path:
        return self.resolve(requested).final_path

    def _next_free(self, path: Path) -> tuple[Path, bool]:
        if not path.exists():
            return path, False
        for index in range(1, MAX_INCREMENT + 1):
            candidate = _with_suffix(path, str(index))
            if not candidate.exists():
                return candidate, True
        return _with_suffix(path, self._now().strftime("%Y%m%d_%H%M%S_%f")), True

    def backup_path(self, path: PathLike) -> Path:
        target = Path(path)
        return _with_suffix(target, f"backup_{self._now().strftime(TIMESTAMP_FORMAT)}")

    def create_backup(self, original: PathLike, backup: PathLike) -> Optional[Path]:
        """Copy *original* to *backup*; nothing to do when *original* is absent."""

        source = Path(original)
        if not source.exists():
            return None
        try:
            return copy_file(source, backup)
        except OSError as exc:
            raise classify_error(exc, str(source)) from exc

    def restore_backup(self, backup: PathLike, target: PathLike) -> Path:
        source = Path(backup)
        if not source.exists():
            raise PdfError(ErrorKind.IO, "backup file does not exist", str(source))
        try:
            return copy_file(source, target)
        except OSError as exc:
            raise classify_error(exc, str(target)) from exc

    def cleanup_backup(self, backup: Optional[PathLike]) -> bool:
        if not backup:
            return False
        try:
            return remove_quietly(backup)
        except OSError as exc:
            raise classify_error(exc, str(backup)) from exc

    def suggested_path(self, inputs: Sequence[PathLike]) -> Path:
        if not inputs:
            return self.output_dir / self.default_filename
        return self.output_dir / f"{Path(inputs[0]).stem}_merged.pdf"

    def set_output_directory(self, directory: PathLike) -> None:
        self.output_dir = ensure_directory_writable(directory)

    def set_default_filename(self, filename: str) -> None:
        self._check_extension(filename)
        self.default_filename = filename


__all__ = ["OutputManager", "ensure_directory_writable", "TIMESTAMP_FORMAT", "MAX_INCREMENT"]
