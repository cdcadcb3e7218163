"""Snapshot a destination before mutating it and put it back on failure."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from .errors import ErrorKind, PdfError, classify_error
from .types import RollbackToken
from .utils import PathLike, copy_file, ensure_path, remove_quietly

LOGGER = logging.getLogger("pdfops.rollback")

T = TypeVar("T")


class RollbackManager:
    """Create, restore and discard destination backups.

    Backups live next to the destination as ``<name>.<timestamp>.bak``
    unless ``backup_dir`` is given. Protecting a path that does not exist is
    refused: fresh writes have nothing to roll back to.
    """

    def __init__(self, backup_dir: Optional[PathLike] = None) -> None:
        self.backup_dir = ensure_path(backup_dir) if backup_dir is not None else None
        self._lock = threading.Lock()

    def _backup_path(self, path: Path) -> Path:
        directory = self.backup_dir or path.parent
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        candidate = directory / f"{path.name}.{stamp}.bak"
        counter = 1
        while candidate.exists():
            candidate = directory / f"{path.name}.{stamp}_{counter}.bak"
            counter += 1
        return candidate

    def backup(self, path: PathLike) -> RollbackToken:
        target = ensure_path(path)
        with self._lock:
            if not target.is_file():
                raise PdfError(ErrorKind.IO, "file to back up does not exist", str(target))
            backup = self._backup_path(target)
            try:
                backup.parent.mkdir(parents=True, exist_ok=True)
                copy_file(target, backup)
            except OSError as exc:
                LOGGER.error("Failed to back up %s: %s", target, exc)
                raise PdfError(ErrorKind.IO, "backup failed", str(target), exc) from exc
        LOGGER.debug("Backed up %s to %s", target, backup)
        return RollbackToken(backup_path=backup, original_path=target)

    def restore(self, token: RollbackToken) -> None:
        """Overwrite the destination from the backup, then delete the backup."""

        with self._lock:
            if not token.backup_path.exists():
                raise PdfError(ErrorKind.IO, "backup file does not exist", str(token.backup_path))
            try:
                copy_file(token.backup_path, token.original_path)
                remove_quietly(token.backup_path)
            except OSError as exc:
                raise classify_error(exc, str(token.original_path)) from exc
        LOGGER.info("Restored %s from backup", token.original_path)

    def discard(self, token: RollbackToken) -> None:
        with self._lock:
            try:
                remove_quietly(token.backup_path)
            except OSError as exc:
                raise classify_error(exc, str(token.backup_path)) from exc

    def with_rollback(self, path: PathLike, operation: Callable[[], T]) -> T:
        """Run *operation* with *path* protected; the original error propagates."""

        with self.protect(path):
            return operation()

    @contextmanager
    def protect(self, path: PathLike) -> Iterator[RollbackToken]:
        token = self.backup(path)
        try:
            yield token
        except BaseException:
            try:
                self.restore(token)
            except PdfError as restore_error:
                LOGGER.error("Rollback of %s failed: %s", token.original_path, restore_error)
            raise
        self.discard(token)


__all__ = ["RollbackManager"]
