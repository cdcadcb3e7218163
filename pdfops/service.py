"""
Resilient service facade.

:class:`ResilientPdfService` is the single entry point callers use. Reads run
through the retry controller, writes through the recovery orchestrator with
output resolution and optional rollback, and batch variants record one error
per job without stopping the sweep.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TextIO, TypeVar

from .cancellation import CancellationToken
from .config import ServiceConfig
from .decryptor import Decryptor, ProgressCallback
from .engines import discover_engine
from .engines.base import EngineState, EngineStatus, PDFEngine
from .errors import ErrorCollector, ErrorKind, PdfError
from .output import OutputManager
from .passwords import PasswordManager
from .retry import MemoryMonitor, RecoveryManager, RetryManager
from .rollback import RollbackManager
from .streaming import StreamingMerger
from .types import DecryptResult, MergeJob, PDFInfo
from .utils import PathLike, copy_file, ensure_iterable, ensure_path, has_encrypt_marker
from .validation import ValidationReport, check_structure, performance_tips

LOGGER = logging.getLogger("pdfops.service")

T = TypeVar("T")

# Engine rejections that strict validation reports as VALIDATION errors.
_STRUCTURAL_KINDS = (ErrorKind.CORRUPTED, ErrorKind.INVALID_FILE, ErrorKind.PROCESSING)


class ResilientPdfService:
    """PDF operations with retry, memory recovery, output management and rollback.

    Args:
        engine: Engine to use. When omitted the engine is discovered from
            ``config`` (or taken from ``status``).
        config: Service settings; defaults to :class:`ServiceConfig`.
        status: Pre-computed engine availability.
        memory: Memory monitor; built from ``config.max_memory_mb`` by default.
        sleep: Replacement for :func:`time.sleep` in every back-off and pause.
    """

    def __init__(
        self,
        engine: Optional[PDFEngine] = None,
        config: Optional[ServiceConfig] = None,
        *,
        status: Optional[EngineStatus] = None,
        memory: Optional[MemoryMonitor] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.config = (config or ServiceConfig()).validate()
        if engine is not None:
            status = EngineStatus(EngineState.AVAILABLE, engine, engine.version())
        self._status = status if status is not None else discover_engine(self.config)

        self.collector = ErrorCollector()
        self.memory = memory if memory is not None else MemoryMonitor.from_megabytes(self.config.max_memory_mb)
        self.retry = RetryManager(self.config.retry, collector=self.collector, memory=self.memory, sleep=sleep)
        self.recovery = RecoveryManager(self.retry, self.memory, self.collector, sleep=sleep)
        self.passwords = PasswordManager(
            self.config.passwords,
            cache_dir=self.config.cache_dir,
            enable_cache=self.config.enable_cache,
            enable_stats=self.config.enable_stats,
        )
        self.output = OutputManager(
            self.config.output_dir,
            self.config.default_filename,
            auto_increment=self.config.auto_increment,
            timestamp_suffix=self.config.timestamp_suffix,
            enable_backup=self.config.enable_backup,
        )
        self.rollback = RollbackManager()

        self.decryptor: Optional[Decryptor] = None
        self.merger: Optional[StreamingMerger] = None
        if self._status.available:
            self.decryptor = Decryptor(
                self._status.engine,
                temp_dir=self.config.temp_dir,
                passwords=self.config.passwords,
                max_attempts=self.config.max_attempts,
                attempt_delay=self.config.attempt_delay,
                password_manager=self.passwords,
                sleep=sleep,
            )
            self.merger = StreamingMerger(
                self._status.engine, batch_size=self.config.batch_size, retry=self.recovery
            )

    @classmethod
    def from_config(cls, config: Optional[ServiceConfig] = None, **kwargs: Any) -> "ResilientPdfService":
        return cls(config=config, **kwargs)

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def engine(self) -> Optional[PDFEngine]:
        return self._status.engine

    def _require_engine(self, *, write: bool, file: Optional[PathLike] = None) -> PDFEngine:
        if self._status.available:
            return self._status.engine
        kind = ErrorKind.PROCESSING if write else ErrorKind.INVALID_FILE
        error = PdfError(kind, self._status.fallback_message, str(file) if file is not None else None)
        self.collector.add(error)
        raise error

    def _require_decryptor(self, *, write: bool, file: PathLike) -> Decryptor:
        self._require_engine(write=write, file=file)
        if self.decryptor is None:
            raise PdfError(ErrorKind.PROCESSING, "decryptor is not initialised", str(file))
        return self.decryptor

    def _require_merger(self) -> StreamingMerger:
        self._require_engine(write=True)
        if self.merger is None:
            raise PdfError(ErrorKind.PROCESSING, "streaming merger is not initialised")
        return self.merger

    def _read(self, operation: Callable[[], T], cancel: Optional[CancellationToken]) -> T:
        return self.retry.execute(operation, cancel)

    def _write(self, target: Path, operation: Callable[[], T], cancel: Optional[CancellationToken]) -> T:
        if self.config.enable_backup and target.is_file():
            with self.rollback.protect(target):
                return self.recovery.execute(operation, cancel)
        return self.recovery.execute(operation, cancel)

    # read operations

    def validate(self, path: PathLike, cancel: Optional[CancellationToken] = None, *, strict: bool = False) -> None:
        """Raise a :class:`PdfError` unless the engine accepts *path*.

        Strict validation first checks the header, version and trailer
        without the engine, then runs the engine in its strict mode and
        reports a rejection as ``VALIDATION``. Without an engine, strict
        validation settles for the structural check.
        """

        pdf_path = ensure_path(path)
        if not strict:
            engine = self._require_engine(write=False, file=pdf_path)
            self._read(lambda: engine.validate(pdf_path), cancel)
            return

        self._read(lambda: check_structure(pdf_path), cancel)
        if not self._status.available:
            LOGGER.warning("No engine available; %s passed the structural check only", pdf_path)
            return
        engine = self._require_engine(write=False, file=pdf_path)
        try:
            self._read(lambda: engine.validate(pdf_path, strict=True), cancel)
        except PdfError as exc:
            if exc.kind not in _STRUCTURAL_KINDS:
                raise
            error = PdfError(ErrorKind.VALIDATION, "PDF failed strict validation", str(pdf_path), exc)
            self.collector.add(error)
            raise error from exc

    def validation_report(self, path: PathLike, cancel: Optional[CancellationToken] = None) -> ValidationReport:
        """Validate *path* and describe the outcome instead of raising.

        Only cancellation and timeouts propagate. An encrypted file whose
        content the engine cannot reach is reported valid with a warning.
        """

        pdf_path = ensure_path(path)
        report = ValidationReport(path=str(pdf_path))
        try:
            check_structure(pdf_path)
        except PdfError as exc:
            report.errors.append(str(exc))
            return report
        file_size = pdf_path.stat().st_size
        report.details["file_size"] = file_size

        if not self._status.available:
            report.warnings.append(f"{self._status.fallback_message} Only the structural check was run.")
            report.details["is_encrypted"] = has_encrypt_marker(pdf_path)
            report.is_valid = True
        else:
            engine = self._require_engine(write=False, file=pdf_path)
            try:
                self._read(lambda: engine.validate(pdf_path), cancel)
            except PdfError as exc:
                if exc.interrupted:
                    raise
                if exc.kind is ErrorKind.ENCRYPTED:
                    report.warnings.append("file is encrypted; its content was not validated")
                    report.is_valid = True
                else:
                    report.errors.append(str(exc))
            else:
                report.is_valid = True

            try:
                info = self._read(lambda: engine.info(pdf_path), cancel)
            except PdfError as exc:
                if exc.interrupted:
                    raise
                LOGGER.debug("No details for %s: %s", pdf_path, exc)
                report.details["is_encrypted"] = has_encrypt_marker(pdf_path)
            else:
                report.details.update(
                    page_count=info.page_count,
                    file_size=info.file_size,
                    is_encrypted=info.is_encrypted,
                    title=info.title,
                )

        report.performance_tips = performance_tips(file_size, bool(report.details.get("is_encrypted")))
        LOGGER.info("Validation report for %s: valid=%s, errors=%d", pdf_path, report.is_valid, len(report.errors))
        return report

    def info(self, path: PathLike, cancel: Optional[CancellationToken] = None) -> PDFInfo:
        pdf_path = ensure_path(path)
        engine = self._require_engine(write=False, file=pdf_path)
        return self._read(lambda: engine.info(pdf_path), cancel)

    def is_encrypted(self, path: PathLike, cancel: Optional[CancellationToken] = None) -> bool:
        pdf_path = ensure_path(path)
        decryptor = self._require_decryptor(write=False, file=pdf_path)
        return self._read(lambda: decryptor.is_encrypted(pdf_path), cancel)

    # write operations

    def decrypt(
        self,
        path: PathLike,
        output: Optional[PathLike] = None,
        *,
        password: Optional[str] = None,
        passwords: Optional[Iterable[str]] = None,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> DecryptResult:
        """Decrypt *path* with an explicit password, a candidate list or the dictionary.

        Without an explicit password a cached one is tried first and evicted
        if the engine rejects it. With *output* the decrypted copy is also
        placed at the resolved output path.
        """

        pdf_path = ensure_path(path)
        decryptor = self._require_decryptor(write=True, file=pdf_path)

        def run() -> DecryptResult:
            if password is not None:
                return decryptor.try_passwords(pdf_path, [password], cancel=cancel, progress=progress)
            cached = self.passwords.get(pdf_path)
            if cached is not None:
                try:
                    return decryptor.try_passwords(
                        pdf_path, [cached], cancel=cancel, progress=progress, remember=False
                    )
                except PdfError as exc:
                    if exc.kind is not ErrorKind.ENCRYPTED:
                        raise
                    LOGGER.info("Cached password for %s rejected; evicting", pdf_path)
                    self.passwords.remove(pdf_path)
            candidates = decryptor.candidates() if passwords is None else list(passwords)
            return decryptor.try_passwords(pdf_path, candidates, cancel=cancel, progress=progress)

        result = self.recovery.execute(run, cancel)
        if output is None or result.is_original:
            return result

        target = self.output.resolve_path(output)
        decrypted = result.decrypted_path
        if decrypted is None:
            raise PdfError(ErrorKind.PROCESSING, "decryption produced no file", str(pdf_path))
        result.decrypted_path = self._write(target, lambda: copy_file(decrypted, target), cancel)
        return result

    def merge(
        self,
        inputs: Sequence[PathLike],
        output: Optional[PathLike] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> Path:
        """Merge *inputs* in order with a single engine call."""

        engine = self._require_engine(write=True)
        paths = ensure_iterable(inputs)
        if not paths:
            raise PdfError(ErrorKind.INVALID_FILE, "no files to merge")
        target = self.output.resolve_path(output)
        return self._write(target, lambda: engine.merge(paths, target), cancel)

    def merge_streaming(
        self,
        inputs: Sequence[PathLike],
        output: Optional[PathLike] = None,
        *,
        batch_size: Optional[int] = None,
        progress: Optional[TextIO] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Path:
        """Merge *inputs* in bounded batches; see :class:`StreamingMerger`."""

        merger = self._require_merger()
        paths = ensure_iterable(inputs)
        if not paths:
            raise PdfError(ErrorKind.INVALID_FILE, "no files to merge")
        target = self.output.resolve_path(output)

        def run() -> Path:
            return merger.merge(paths, target, progress=progress, batch_size=batch_size, cancel=cancel)

        if self.config.enable_backup and target.is_file():
            with self.rollback.protect(target):
                return run()
        return run()

    # batch operations

    def validate_many(
        self, paths: Sequence[PathLike], cancel: Optional[CancellationToken] = None, *, strict: bool = False
    ) -> List[Optional[PdfError]]:
        """Validate every path; the result holds ``None`` or the error for each input."""

        results: List[Optional[PdfError]] = []
        for path in paths:
            try:
                self.validate(path, cancel, strict=strict)
            except PdfError as exc:
                LOGGER.warning("Validation failed for %s: %s", path, exc)
                results.append(exc)
            else:
                results.append(None)
        return results

    def merge_many(
        self, jobs: Sequence[MergeJob], cancel: Optional[CancellationToken] = None
    ) -> List[Optional[PdfError]]:
        """Run merge jobs in order, recording each job's outcome on the job itself."""

        results: List[Optional[PdfError]] = []
        for job in jobs:
            job.start()
            try:
                result = self.merge(job.inputs, job.output, cancel=cancel)
            except PdfError as exc:
                LOGGER.warning("Merge job %s failed: %s", job.name or job.output, exc)
                job.fail(exc)
                results.append(exc)
            else:
                job.complete(result)
                results.append(None)
        return results

    # file helpers

    def robust_file_operation(
        self,
        path: PathLike,
        operation: Callable[[Path], T],
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """Check *path* exists and is readable, then run ``operation(path)`` with recovery."""

        file_path = ensure_path(path)

        def run() -> T:
            if not file_path.exists():
                raise PdfError(ErrorKind.INVALID_FILE, "file does not exist", str(file_path))
            try:
                with file_path.open("rb"):
                    pass
            except OSError as exc:
                raise PdfError(ErrorKind.PERMISSION, "file cannot be opened", str(file_path), exc) from exc
            return operation(file_path)

        return self.recovery.execute(run, cancel)

    def safe_output_operation(
        self,
        path: PathLike,
        operation: Callable[[Path], T],
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """Make sure the output directory exists and is writable, then run ``operation(path)``."""

        output_path = ensure_path(path)
        directory = output_path.parent

        def run() -> T:
            try:
                directory.mkdir(mode=0o755, parents=True, exist_ok=True)
            except OSError as exc:
                raise PdfError(ErrorKind.PERMISSION, "cannot create output directory", str(directory), exc) from exc
            probe = directory / ".test"
            try:
                probe.touch()
                os.remove(probe)
            except OSError as exc:
                raise PdfError(ErrorKind.PERMISSION, "output directory is not writable", str(directory), exc) from exc
            return operation(output_path)

        return self.recovery.execute(run, cancel)

    # diagnostics

    def stats(self) -> Dict[str, Any]:
        stats = self.recovery.stats()
        stats.update(
            {
                "service_type": type(self).__name__,
                "engine": self._status.engine_name,
                "engine_state": self._status.state.value,
                "engine_version": self._status.version,
                "retry_enabled": True,
                "recovery_enabled": True,
            }
        )
        return stats

    def errors(self) -> List[BaseException]:
        return self.collector.errors()

    def error_summary(self) -> str:
        return self.collector.summary()

    def clear_errors(self) -> None:
        self.collector.clear()

    def cleanup(self) -> None:
        if self.decryptor is not None:
            self.decryptor.cleanup()

    def __enter__(self) -> "ResilientPdfService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


__all__ = ["ResilientPdfService"]
