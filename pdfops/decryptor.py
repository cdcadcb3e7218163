"""Dictionary driven decryption of password protected PDFs."""

from __future__ import annotations

import logging
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, TextIO

from .cancellation import CancellationToken, check_cancelled
from .engines.base import PDFEngine
from .errors import ErrorKind, PdfError, classify_error
from .passwords import DEFAULT_PASSWORDS, PasswordManager
from .types import DecryptResult
from .utils import PathLike, ensure_path, has_encrypt_marker, remove_quietly

LOGGER = logging.getLogger("pdfops.decryptor")

ProgressCallback = Callable[[int, int, str], None]


def progress_line(current: int, total: int, password: str) -> str:
    shown = password if password else "<empty>"
    return f"attempting {shown} ({current}/{total})"


class Decryptor:
    """Try candidate passwords against an encrypted PDF, one at a time.

    Decrypted copies are written to ``temp_dir`` as ``decrypted_<name>`` and
    tracked until :meth:`cleanup` removes them.

    Args:
        engine: Engine used for the encryption probe and every decrypt call.
        temp_dir: Directory for decrypted copies; the system temp dir by default.
        passwords: Dictionary used by :meth:`auto_decrypt`.
        max_attempts: Upper bound on candidates tried per file.
        attempt_delay: Seconds to wait between two failed candidates.
        progress: Called with ``(current, total, candidate)`` before each attempt.
        password_manager: Records successful passwords and supplies the
            optimised dictionary when present.
    """

    def __init__(
        self,
        engine: PDFEngine,
        *,
        temp_dir: Optional[PathLike] = None,
        passwords: Optional[Iterable[str]] = None,
        max_attempts: int = 100,
        attempt_delay: float = 0.1,
        progress: Optional[ProgressCallback] = None,
        password_manager: Optional[PasswordManager] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise PdfError(ErrorKind.INVALID_INPUT, "max_attempts must be >= 1")
        self.engine = engine
        self.temp_dir = ensure_path(temp_dir) if temp_dir is not None else Path(tempfile.gettempdir())
        self.passwords = list(DEFAULT_PASSWORDS if passwords is None else passwords)
        self.max_attempts = max_attempts
        self.attempt_delay = attempt_delay
        self.progress = progress
        self.password_manager = password_manager
        self._sleep = sleep
        self._temp_files: List[Path] = []
        self._lock = threading.Lock()

    def target_path(self, source: PathLike) -> Path:
        return self.temp_dir / f"decrypted_{ensure_path(source).name}"

    def is_encrypted(self, path: PathLike) -> bool:
        """Ask the engine; fall back to the raw ``/Encrypt`` scan only if the engine fails."""

        pdf_path = ensure_path(path)
        if not pdf_path.is_file():
            raise PdfError(ErrorKind.IO, "file not found", str(pdf_path))
        try:
            return self.engine.is_encrypted(pdf_path)
        except PdfError as exc:
            if exc.kind is ErrorKind.ENCRYPTED:
                return True
            try:
                marked = has_encrypt_marker(pdf_path)
            except OSError as scan_exc:
                raise classify_error(scan_exc, str(pdf_path)) from scan_exc
            if marked:
                LOGGER.warning("Engine could not inspect %s (%s); treating it as encrypted", pdf_path, exc)
                return True
            raise

    def decrypt_file(self, source: PathLike, password: str) -> Path:
        """Decrypt *source* with one password into its temp target."""

        source_path = ensure_path(source)
        target = self.target_path(source_path)
        self.temp_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
        try:
            return self.engine.decrypt(source_path, target, password)
        except PdfError:
            raise
        except Exception as exc:  # engine errors vary
            raise classify_error(exc, str(source_path)) from exc

    def _wait(self, cancel: Optional[CancellationToken]) -> None:
        if self.attempt_delay <= 0:
            return
        if self._sleep is not None:
            self._sleep(self.attempt_delay)
        elif cancel is not None:
            cancel.wait(self.attempt_delay)
        else:
            time.sleep(self.attempt_delay)

    def try_passwords(
        self,
        path: PathLike,
        passwords: Iterable[str],
        *,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
        remember: bool = True,
    ) -> DecryptResult:
        """Try *passwords* in order and return the first success.

        Raises an ``ENCRYPTED`` :class:`PdfError` reporting the attempt count
        when every candidate is rejected. Any other engine error aborts the
        search immediately. With ``remember=False`` a working password is not
        recorded with the password manager.
        """

        started = time.perf_counter()
        pdf_path = ensure_path(path)
        if not self.is_encrypted(pdf_path):
            LOGGER.debug("%s is not encrypted", pdf_path)
            return DecryptResult(
                success=True,
                decrypted_path=pdf_path,
                processing_time=time.perf_counter() - started,
                is_original=True,
            )

        callback = progress or self.progress
        candidates = list(passwords)[: self.max_attempts]
        total = len(candidates)
        attempts = 0
        for index, password in enumerate(candidates):
            check_cancelled(cancel)
            if callback is not None:
                callback(index + 1, total, password)
            attempts = index + 1
            try:
                target = self.decrypt_file(pdf_path, password)
            except PdfError as exc:
                if exc.kind is not ErrorKind.ENCRYPTED:
                    LOGGER.error("Decryption of %s aborted: %s", pdf_path, exc)
                    raise
                LOGGER.debug("Password %d/%d rejected for %s", attempts, total, pdf_path)
                if attempts < total:
                    self._wait(cancel)
                continue

            self._track(target)
            if remember and self.password_manager is not None:
                self.password_manager.set(pdf_path, password)
            LOGGER.info("Decrypted %s after %d attempt(s)", pdf_path, attempts)
            return DecryptResult(
                success=True,
                decrypted_path=target,
                used_password=password,
                attempt_count=attempts,
                processing_time=time.perf_counter() - started,
            )

        raise PdfError(
            ErrorKind.ENCRYPTED,
            f"could not decrypt file with {attempts} password(s)",
            str(pdf_path),
        )

    def candidates(self) -> List[str]:
        if self.password_manager is None:
            return list(self.passwords)
        ranked = self.password_manager.optimized_list()
        seen = set(ranked)
        return ranked + [password for password in self.passwords if password not in seen]

    def auto_decrypt(
        self,
        path: PathLike,
        *,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> DecryptResult:
        return self.try_passwords(path, self.candidates(), cancel=cancel, progress=progress)

    def decrypt_with_progress(
        self,
        path: PathLike,
        stream: TextIO,
        *,
        passwords: Optional[Iterable[str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DecryptResult:
        """Like :meth:`auto_decrypt`, writing human readable progress lines to *stream*."""

        pdf_path = ensure_path(path)

        def report(current: int, total: int, password: str) -> None:
            stream.write(progress_line(current, total, password) + "\n")

        stream.write(f"decrypting {pdf_path.name}\n")
        candidates = self.candidates() if passwords is None else list(passwords)
        try:
            result = self.try_passwords(pdf_path, candidates, cancel=cancel, progress=report)
        except PdfError as exc:
            stream.write(f"failed: {exc.message}\n")
            raise
        if result.is_original:
            stream.write("file is not encrypted\n")
        else:
            stream.write(f"decrypted after {result.attempt_count} attempt(s) in {result.processing_time:.2f}s\n")
        return result

    def _track(self, path: Path) -> None:
        with self._lock:
            if path not in self._temp_files:
                self._temp_files.append(path)

    def temp_files(self) -> List[Path]:
        with self._lock:
            return list(self._temp_files)

    def cleanup(self) -> None:
        """Delete every tracked decrypted copy."""

        with self._lock:
            files, self._temp_files = self._temp_files, []

        failures = []
        for path in files:
            try:
                remove_quietly(path)
            except OSError as exc:
                LOGGER.warning("Failed to remove temp file %s: %s", path, exc)
                failures.append(f"{path}: {exc}")
        if failures:
            raise PdfError(ErrorKind.IO, "failed to remove temp files: " + "; ".join(failures))
        LOGGER.debug("Removed %d temp file(s)", len(files))


__all__ = ["Decryptor", "ProgressCallback", "progress_line"]
