from __future__ import annotations

import time
from typing import List

import pytest

from pdfops.cancellation import CancellationToken
from pdfops.config import RetryConfig
from pdfops.errors import ErrorCollector, ErrorKind, PdfError, cancelled_error
from pdfops.retry import MemoryMonitor, RecoveryManager, RetryManager


class Flaky:
    """Fails with the queued errors, then returns ``"ok"``."""

    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def io_error() -> PdfError:
    return PdfError(ErrorKind.IO, "transient")


def retry_manager(sleeps: List[float], **config) -> RetryManager:
    config.setdefault("timeout", None)
    return RetryManager(RetryConfig(**config), sleep=sleeps.append)


def test_succeeds_on_third_attempt(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps, max_retries=3, initial_delay=0.1, backoff_factor=2)
    operation = Flaky(io_error(), io_error())

    assert manager.execute(operation) == "ok"

    assert operation.calls == 3
    assert sleeps == [pytest.approx(0.1), pytest.approx(0.2)]
    assert manager.collector.count == 2


def test_exhaustion_surfaces_last_error(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps, max_retries=2)
    operation = Flaky(*(io_error() for _ in range(10)))

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.kind is ErrorKind.IO
    assert operation.calls == 3
    assert len(sleeps) == 2
    assert manager.collector.count == 3


def test_non_retryable_error_fails_fast(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps)
    operation = Flaky(PdfError(ErrorKind.INVALID_FILE, "not a pdf"))

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.kind is ErrorKind.INVALID_FILE
    assert operation.calls == 1
    assert sleeps == []


def test_zero_retries_means_one_attempt(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps, max_retries=0)
    operation = Flaky(io_error())

    with pytest.raises(PdfError):
        manager.execute(operation)

    assert operation.calls == 1
    assert sleeps == []


def test_cancelled_before_first_attempt(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps)
    operation = Flaky()
    token = CancellationToken()
    token.cancel()

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation, token)

    assert operation.calls == 0
    assert excinfo.value.kind is ErrorKind.IO
    assert "cancelled" in excinfo.value.message
    assert excinfo.value in manager.collector


def test_raw_exceptions_are_classified(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps, max_retries=1)
    operation = Flaky(OSError("I/O error"))
    assert manager.execute(operation) == "ok"
    assert operation.calls == 2

    failing = Flaky(ValueError("bad value"))
    with pytest.raises(PdfError) as excinfo:
        manager.execute(failing)
    assert excinfo.value.kind is ErrorKind.PROCESSING
    assert failing.calls == 1


def test_delay_is_capped_by_max_delay(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps, max_retries=3, initial_delay=1, backoff_factor=10, max_delay=2)
    operation = Flaky(*(io_error() for _ in range(3)))

    manager.execute(operation)

    assert sleeps == [1, 2, 2]


def test_overall_timeout_stops_retrying() -> None:
    manager = RetryManager(RetryConfig(max_retries=1000, initial_delay=0.02, max_delay=0.02, timeout=0.1))
    operation = Flaky(*(io_error() for _ in range(10000)))
    started = time.monotonic()

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.kind is ErrorKind.IO
    assert "timed out" in excinfo.value.message
    assert time.monotonic() - started < 2
    assert operation.calls < 1000


def test_memory_check_runs_before_each_attempt(sleeps: List[float]) -> None:
    monitor = MemoryMonitor(max_bytes=100, probe=lambda: 1000)
    manager = RetryManager(RetryConfig(max_retries=1, timeout=None), memory=monitor, sleep=sleeps.append)
    operation = Flaky()

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.kind is ErrorKind.MEMORY
    assert operation.calls == 0
    assert monitor.collections == 2


def test_memory_monitor_below_threshold_does_nothing() -> None:
    monitor = MemoryMonitor(max_bytes=1000, probe=lambda: 100)
    monitor.check()
    assert monitor.collections == 0
    assert monitor.gc_threshold == 500


def test_memory_monitor_collects_above_threshold(probe_factory) -> None:
    monitor = MemoryMonitor(max_bytes=1000, probe=probe_factory([600, 400], 400))
    monitor.check()
    assert monitor.collections == 1
    assert monitor.peak_bytes == 600


def test_memory_monitor_raises_above_limit() -> None:
    monitor = MemoryMonitor(max_bytes=1000, probe=lambda: 2000)
    with pytest.raises(PdfError) as excinfo:
        monitor.check()
    assert excinfo.value.kind is ErrorKind.MEMORY
    stats = monitor.stats()
    assert stats["collections"] == 1
    assert set(stats) == {"rss_mb", "peak_mb", "max_allowed_mb", "gc_threshold_mb", "collections"}


def test_memory_monitor_uses_psutil_by_default() -> None:
    monitor = MemoryMonitor.from_megabytes(4096)
    assert monitor.max_bytes == 4096 * 1024 * 1024
    assert monitor.usage() > 0


def test_memory_monitor_rejects_non_positive_limit() -> None:
    with pytest.raises(PdfError):
        MemoryMonitor(max_bytes=0)


def recovery_manager(sleeps: List[float], memory: MemoryMonitor, max_retries: int = 1) -> RecoveryManager:
    retry = RetryManager(RetryConfig(max_retries=max_retries, timeout=None), sleep=sleeps.append)
    return RecoveryManager(retry, memory, ErrorCollector(), sleep=sleeps.append)


def test_recovery_grants_one_more_attempt_after_io(sleeps: List[float], quiet_memory: MemoryMonitor) -> None:
    manager = recovery_manager(sleeps, quiet_memory)
    operation = Flaky(io_error(), io_error())

    assert manager.execute(operation) == "ok"

    assert operation.calls == 3
    assert sleeps == [pytest.approx(0.1), pytest.approx(0.5)]
    assert manager.collector.count == 2


def test_recovery_gives_up_after_the_extra_attempt(sleeps: List[float], quiet_memory: MemoryMonitor) -> None:
    manager = recovery_manager(sleeps, quiet_memory)
    operation = Flaky(*(io_error() for _ in range(5)))

    with pytest.raises(PdfError):
        manager.execute(operation)

    assert operation.calls == 3


def test_recovery_does_not_retry_permission_errors(sleeps: List[float], quiet_memory: MemoryMonitor) -> None:
    manager = recovery_manager(sleeps, quiet_memory)
    operation = Flaky(PdfError(ErrorKind.PERMISSION, "denied"))

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.kind is ErrorKind.PERMISSION
    assert operation.calls == 1
    assert manager.errors() == [excinfo.value]


def test_recovery_clears_memory_pressure_before_running(sleeps: List[float], probe_factory) -> None:
    memory = MemoryMonitor(max_bytes=1000, probe=probe_factory([2000, 2000], 100))
    manager = recovery_manager(sleeps, memory)
    operation = Flaky()

    assert manager.execute(operation) == "ok"

    assert operation.calls == 1
    assert memory.collections == 2
    assert manager.collector.count == 1
    assert manager.collector.errors()[0].kind is ErrorKind.MEMORY


def test_recovery_surfaces_unrecoverable_memory_pressure(sleeps: List[float]) -> None:
    manager = recovery_manager(sleeps, MemoryMonitor(max_bytes=1000, probe=lambda: 5000))
    operation = Flaky()

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.kind is ErrorKind.MEMORY
    assert operation.calls == 0


def test_recovery_skips_when_cancelled(sleeps: List[float], quiet_memory: MemoryMonitor) -> None:
    manager = recovery_manager(sleeps, quiet_memory, max_retries=0)
    token = CancellationToken()

    def operation() -> str:
        token.cancel()
        raise io_error()

    with pytest.raises(PdfError):
        manager.execute(operation, token)
    assert sleeps == []


def test_recovery_stats_and_error_helpers(sleeps: List[float], quiet_memory: MemoryMonitor) -> None:
    manager = recovery_manager(sleeps, quiet_memory, max_retries=0)
    with pytest.raises(PdfError):
        manager.execute(Flaky(PdfError(ErrorKind.CORRUPTED, "bad xref")))

    stats = manager.stats()
    assert stats["error_count"] == 1
    assert stats["has_errors"] is True
    assert "Corrupted File" in manager.error_summary()

    manager.clear_errors()
    assert manager.errors() == []


def test_interrupted_error_from_operation_is_not_retried(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps, max_retries=3)
    operation = Flaky(cancelled_error())

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.interrupted
    assert operation.calls == 1
    assert sleeps == []


def test_negative_retry_override_raises_processing_error(sleeps: List[float]) -> None:
    manager = retry_manager(sleeps)
    operation = Flaky()

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation, max_retries=-1)

    assert excinfo.value.kind is ErrorKind.PROCESSING
    assert operation.calls == 0


def test_recovery_never_extends_the_retry_deadline(quiet_memory: MemoryMonitor) -> None:
    retry = RetryManager(RetryConfig(max_retries=5, initial_delay=0.01, timeout=0.05))
    manager = RecoveryManager(retry, quiet_memory, ErrorCollector())
    calls: List[float] = []

    def operation() -> str:
        calls.append(time.monotonic())
        time.sleep(0.06)
        raise PdfError(ErrorKind.IO, "disk hiccup")

    started = time.monotonic()
    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)
    elapsed = time.monotonic() - started

    assert excinfo.value.interrupted
    assert "timed out" in excinfo.value.message
    assert len(calls) == 1
    assert elapsed < 0.5


def test_recovery_does_not_recover_cancellation(sleeps: List[float], quiet_memory: MemoryMonitor) -> None:
    manager = recovery_manager(sleeps, quiet_memory, max_retries=2)
    operation = Flaky(cancelled_error())

    with pytest.raises(PdfError) as excinfo:
        manager.execute(operation)

    assert excinfo.value.interrupted
    assert operation.calls == 1
    assert sleeps == []
