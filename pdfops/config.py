"""Configuration objects for pdfops services."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import ErrorKind, PdfError
from .utils import PathLike, atomic_write_json, ensure_path

DISCOVERY_TARGETS = ("cli", "library")


@dataclass
class RetryConfig:
    """Bounded exponential back-off settings.

    Attributes:
        max_retries: Retries after the first attempt (``0`` means one attempt).
        initial_delay: Seconds to wait before the first retry.
        max_delay: Upper bound for a single back-off sleep.
        backoff_factor: Multiplier applied to the delay after each retry.
        timeout: Overall budget in seconds; ``0`` or ``None`` disables it.
    """

    max_retries: int = 3
    initial_delay: float = 0.1
    max_delay: float = 5.0
    backoff_factor: float = 2.0
    timeout: Optional[float] = 30.0

    def validate(self) -> "RetryConfig":
        if self.max_retries < 0:
            raise PdfError(ErrorKind.INVALID_INPUT, "max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise PdfError(ErrorKind.INVALID_INPUT, "retry delays must be >= 0")
        if self.backoff_factor < 1:
            raise PdfError(ErrorKind.INVALID_INPUT, "backoff_factor must be >= 1")
        if self.timeout is not None and self.timeout < 0:
            raise PdfError(ErrorKind.INVALID_INPUT, "timeout must be >= 0")
        return self


@dataclass
class ServiceConfig:
    """Settings for engine discovery and every resilient-service collaborator."""

    # engine discovery
    cli_path: str = "pdfcpu"
    library_enabled: bool = True
    discovery_order: Tuple[str, ...] = DISCOVERY_TARGETS
    engine_timeout: float = 30.0
    merge_timeout: float = 60.0

    # memory and merging
    max_memory_mb: int = 512
    batch_size: int = 10

    # decryption
    temp_dir: Optional[str] = None
    max_attempts: int = 100
    attempt_delay: float = 0.1
    passwords: Optional[List[str]] = None

    # password cache
    cache_dir: Optional[str] = None
    enable_cache: bool = False
    enable_stats: bool = False

    # output
    output_dir: str = "."
    default_filename: str = "merged_output.pdf"
    auto_increment: bool = True
    timestamp_suffix: bool = False
    enable_backup: bool = True

    ab_results_path: Optional[str] = None

    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        if isinstance(self.retry, dict):
            self.retry = RetryConfig(**self.retry)
        self.discovery_order = tuple(self.discovery_order)

    def validate(self) -> "ServiceConfig":
        unknown = [name for name in self.discovery_order if name not in DISCOVERY_TARGETS]
        if unknown:
            raise PdfError(ErrorKind.INVALID_INPUT, f"Unknown discovery target(s): {unknown}")
        if self.batch_size < 1:
            raise PdfError(ErrorKind.INVALID_INPUT, "batch_size must be >= 1")
        if self.max_attempts < 1:
            raise PdfError(ErrorKind.INVALID_INPUT, "max_attempts must be >= 1")
        if self.max_memory_mb <= 0:
            raise PdfError(ErrorKind.INVALID_INPUT, "max_memory_mb must be > 0")
        self.retry.validate()
        return self

    @property
    def max_memory_bytes(self) -> int:
        return self.max_memory_mb * 1024 * 1024

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["discovery_order"] = list(self.discovery_order)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    @classmethod
    def load(cls, path: PathLike) -> "ServiceConfig":
        config_path = ensure_path(path)
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise PdfError(ErrorKind.IO, "configuration file not found", str(config_path), exc) from exc
        except (OSError, ValueError) as exc:
            raise PdfError(ErrorKind.INVALID_INPUT, "unreadable configuration file", str(config_path), exc) from exc
        if not isinstance(data, dict):
            raise PdfError(ErrorKind.INVALID_INPUT, "configuration must be a JSON object", str(config_path))
        return cls.from_dict(data)

    def save(self, path: PathLike) -> Path:
        return atomic_write_json(ensure_path(path), self.to_dict())


__all__ = ["RetryConfig", "ServiceConfig", "DISCOVERY_TARGETS"]
