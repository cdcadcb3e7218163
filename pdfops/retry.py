"""
Retry, memory supervision and recovery for PDF operations.

:class:`RetryManager` runs an operation with bounded exponential back-off,
:class:`MemoryMonitor` keeps process memory below a ceiling and
:class:`RecoveryManager` composes both, adding fault-specific recovery on top.
"""

from __future__ import annotations

import gc
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import psutil

from .cancellation import CancellationToken
from .config import RetryConfig
from .errors import ErrorCollector, ErrorKind, PdfError, classify_error

LOGGER = logging.getLogger("pdfops.retry")

T = TypeVar("T")

_MB = 1024 * 1024


def _deadline_token(timeout: Optional[float], cancel: Optional[CancellationToken]) -> Optional[CancellationToken]:
    if timeout:
        return CancellationToken.with_timeout(timeout, parent=cancel)
    return cancel


class RetryManager:
    """Run operations up to ``max_retries + 1`` times with exponential back-off.

    Only retryable failures (``MEMORY`` and ``IO``) are retried; anything else
    surfaces after the first attempt. Every attempt failure is appended to
    :attr:`collector`.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        collector: Optional[ErrorCollector] = None,
        memory: Optional["MemoryMonitor"] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.config = (config or RetryConfig()).validate()
        self.collector = collector if collector is not None else ErrorCollector()
        self.memory = memory
        self._sleep = sleep

    def _wait(self, seconds: float, token: Optional[CancellationToken]) -> None:
        if token is not None:
            remaining = token.remaining()
            if remaining is not None:
                seconds = min(seconds, remaining)
        if self._sleep is not None:
            self._sleep(seconds)
        elif token is not None:
            token.wait(seconds)
        else:
            time.sleep(seconds)

    def _surface(self, error: PdfError) -> PdfError:
        if error not in self.collector:
            self.collector.add(error)
        return error

    def execute(
        self,
        operation: Callable[[], T],
        cancel: Optional[CancellationToken] = None,
        *,
        max_retries: Optional[int] = None,
    ) -> T:
        """Run *operation* and return its result, retrying retryable failures."""

        config = self.config
        retries = config.max_retries if max_retries is None else max_retries
        token = _deadline_token(config.timeout, cancel)
        delay = config.initial_delay

        for attempt in range(retries + 1):
            if token is not None and token.done:
                raise self._surface(token.error())

            try:
                if self.memory is not None:
                    self.memory.check()
                result = operation()
            except Exception as exc:
                error = classify_error(exc)
                self.collector.add(error)
                if not error.retryable:
                    LOGGER.debug("Attempt %d failed with non-retryable error: %s", attempt + 1, error)
                    raise error
                if attempt == retries:
                    LOGGER.error("Operation failed after %d attempts: %s", retries + 1, error)
                    raise error
                LOGGER.warning(
                    "Attempt %d/%d failed: %s; retrying in %.2fs",
                    attempt + 1,
                    retries + 1,
                    error,
                    min(delay, config.max_delay),
                )
                self._wait(min(delay, config.max_delay), token)
                delay = min(delay * config.backoff_factor, config.max_delay)
                continue

            if attempt:
                LOGGER.info("Operation succeeded after %d attempts", attempt + 1)
            return result

        raise PdfError(ErrorKind.PROCESSING, "retry loop ended without an attempt")


class MemoryMonitor:
    """Process memory supervision backed by :mod:`psutil`.

    Above ``gc_threshold`` (half of ``max_bytes`` by default) a forced
    collection runs; if usage is still above ``max_bytes`` afterwards,
    :meth:`check` raises a ``MEMORY`` error.
    """

    def __init__(
        self,
        max_bytes: int = 512 * _MB,
        *,
        gc_threshold: Optional[int] = None,
        probe: Optional[Callable[[], int]] = None,
    ) -> None:
        if max_bytes <= 0:
            raise PdfError(ErrorKind.INVALID_INPUT, "max_bytes must be > 0")
        self.max_bytes = max_bytes
        self.gc_threshold = gc_threshold if gc_threshold is not None else max_bytes // 2
        self._process = psutil.Process() if probe is None else None
        self._probe = probe
        self.collections = 0
        self.peak_bytes = 0

    @classmethod
    def from_megabytes(cls, max_mb: int, **kwargs: Any) -> "MemoryMonitor":
        return cls(max_mb * _MB, **kwargs)

    def usage(self) -> int:
        current = self._probe() if self._probe is not None else self._process.memory_info().rss
        self.peak_bytes = max(self.peak_bytes, current)
        return current

    def force_collect(self) -> None:
        gc.collect()
        gc.collect()
        self.collections += 1

    def check(self) -> None:
        current = self.usage()
        if current <= self.gc_threshold:
            return
        LOGGER.debug("Memory usage %d MB above GC threshold; collecting", current // _MB)
        self.force_collect()
        current = self.usage()
        if current > self.max_bytes:
            LOGGER.warning("Memory usage %d MB exceeds limit %d MB", current // _MB, self.max_bytes // _MB)
            raise PdfError(
                ErrorKind.MEMORY,
                f"memory usage {current // _MB} MB exceeds limit {self.max_bytes // _MB} MB",
            )

    def stats(self) -> Dict[str, Any]:
        current = self.usage()
        return {
            "rss_mb": current / _MB,
            "peak_mb": self.peak_bytes / _MB,
            "max_allowed_mb": self.max_bytes // _MB,
            "gc_threshold_mb": self.gc_threshold // _MB,
            "collections": self.collections,
        }


class RecoveryManager:
    """Compose retry and memory supervision with fault-specific recovery.

    Memory is checked before the operation and before every attempt. When the
    retry loop surfaces a ``MEMORY`` error that a forced collection clears, or
    an ``IO`` error, the operation gets one more attempt. ``PERMISSION`` and
    every other kind surface immediately.
    """

    def __init__(
        self,
        retry: Optional[RetryManager] = None,
        memory: Optional[MemoryMonitor] = None,
        collector: Optional[ErrorCollector] = None,
        *,
        sleep: Optional[Callable[[float], None]] = None,
        recovery_pause: float = 0.1,
        io_pause: float = 0.5,
    ) -> None:
        self.collector = collector if collector is not None else ErrorCollector()
        self.memory = memory if memory is not None else MemoryMonitor()
        self.retry = retry if retry is not None else RetryManager(sleep=sleep)
        self.retry.collector = self.collector
        self.retry.memory = self.memory
        self._sleep = sleep if sleep is not None else time.sleep
        self.recovery_pause = recovery_pause
        self.io_pause = io_pause

    def _pause(self, seconds: float, token: Optional[CancellationToken]) -> None:
        if token is not None:
            remaining = token.remaining()
            if remaining is not None:
                seconds = min(seconds, remaining)
        if token is not None and self._sleep is time.sleep:
            token.wait(seconds)
        else:
            self._sleep(seconds)

    def recover_memory(self, cancel: Optional[CancellationToken] = None) -> bool:
        self.memory.force_collect()
        self._pause(self.recovery_pause, cancel)
        try:
            self.memory.check()
        except PdfError:
            return False
        return True

    def _recover(self, error: PdfError, cancel: Optional[CancellationToken]) -> bool:
        if error.kind is ErrorKind.MEMORY:
            return self.recover_memory(cancel)
        if error.kind is ErrorKind.IO:
            self._pause(self.io_pause, cancel)
            return True
        return False

    def execute(self, operation: Callable[[], T], cancel: Optional[CancellationToken] = None) -> T:
        """Run *operation* with retries and at most one recovered extra attempt.

        The retry timeout is one deadline for the whole call: the recovery
        pause and the extra attempt run against it too. Cancellation and
        deadline errors are surfaced as they are, never recovered.
        """

        deadline = _deadline_token(self.retry.config.timeout, cancel)
        try:
            self.memory.check()
        except PdfError as exc:
            self.collector.add(exc)
            if not self.recover_memory(deadline):
                LOGGER.error("Memory recovery failed: %s", exc)
                raise
            LOGGER.info("Recovered from memory pressure before running operation")

        try:
            return self.retry.execute(operation, deadline)
        except PdfError as exc:
            if exc not in self.collector:
                self.collector.add(exc)
            if exc.interrupted or (deadline is not None and deadline.done):
                raise
            if not self._recover(exc, deadline):
                raise
            LOGGER.warning("Recovered from %s; making one more attempt", exc.kind.label)
        return self.retry.execute(operation, deadline, max_retries=0)

    def stats(self) -> Dict[str, Any]:
        stats = self.memory.stats()
        stats["error_count"] = self.collector.count
        stats["has_errors"] = self.collector.has_errors
        return stats

    def errors(self) -> List[BaseException]:
        return self.collector.errors()

    def error_summary(self) -> str:
        return self.collector.summary()

    def clear_errors(self) -> None:
        self.collector.clear()


__all__ = ["RetryManager", "MemoryMonitor", "RecoveryManager"]
