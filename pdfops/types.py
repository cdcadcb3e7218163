"""
Type definitions and dataclasses for pdfops.

This module defines the records exchanged between the engines, the resilient
service and its callers.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from .utils import format_file_size

# Fixed permission vocabulary, in display order.
PERMISSIONS = ("print", "modify", "copy", "annotate", "fill", "extract", "assemble", "print_high")

METADATA_FIELDS = ("Title", "Author", "Subject", "Creator", "Producer", "Keywords", "Trapped")

_FLAG_NAMES = {
    "print": "print",
    "modify": "modify",
    "copy": "copy",
    "annotate": "annotate",
    "fill": "fill_forms",
    "extract": "extract",
    "assemble": "assemble",
    "print_high": "print_high_quality",
}


def normalize_permissions(values: Iterable[str]) -> FrozenSet[str]:
    """Return the subset of *values* that belongs to :data:`PERMISSIONS`."""

    cleaned = {str(value).strip().lower().replace("-", "_").replace(" ", "_") for value in values}
    return frozenset(name for name in PERMISSIONS if name in cleaned)


@dataclass(frozen=True)
class PDFInfo:
    """
    Canonical metadata and permission record for one PDF file.

    The permission set is the source of truth; the ``*_allowed`` booleans are
    a view derived from it whenever a record is constructed. Unencrypted
    files always carry the full permission set.

    Attributes:
        path: Location of the PDF the record describes
        file_size: Size in bytes
        page_count: Number of pages, ``None`` when the engine did not report it
        version: PDF version string from the header (``"1.7"``)
        is_encrypted: Whether the file uses the standard security handler
        encryption_method: Cipher reported by the engine (``"AES"``, ``"RC4"``)
        key_length: Key length in bits
        user_password: A user (open) password is set
        owner_password: An owner (permissions) password is set
        permissions: Granted permissions drawn from :data:`PERMISSIONS`
        engine_version: Version string of the engine that produced the record
    """

    path: Path
    file_size: int = 0
    page_count: Optional[int] = None
    version: str = ""
    is_encrypted: bool = False
    encryption_method: str = ""
    key_length: int = 0
    user_password: bool = False
    owner_password: bool = False
    permissions: FrozenSet[str] = frozenset()
    title: str = ""
    author: str = ""
    subject: str = ""
    creator: str = ""
    producer: str = ""
    keywords: str = ""
    trapped: str = ""
    engine_version: str = ""

    print_allowed: bool = field(init=False, default=True)
    modify_allowed: bool = field(init=False, default=True)
    copy_allowed: bool = field(init=False, default=True)
    annotate_allowed: bool = field(init=False, default=True)
    fill_forms_allowed: bool = field(init=False, default=True)
    extract_allowed: bool = field(init=False, default=True)
    assemble_allowed: bool = field(init=False, default=True)
    print_high_quality_allowed: bool = field(init=False, default=True)

    def __post_init__(self) -> None:
        if self.page_count is not None and self.page_count < 0:
            raise ValueError("page_count must be non-negative")
        if self.file_size < 0:
            raise ValueError("file_size must be non-negative")

        object.__setattr__(self, "path", Path(self.path))
        if self.is_encrypted:
            granted = normalize_permissions(self.permissions)
        else:
            granted = frozenset(PERMISSIONS)
        object.__setattr__(self, "permissions", granted)
        for name, flag in _FLAG_NAMES.items():
            object.__setattr__(self, f"{flag}_allowed", name in granted)

    @property
    def is_valid(self) -> bool:
        return bool(self.page_count) and self.file_size > 0

    @property
    def has_metadata(self) -> bool:
        return any((self.title, self.author, self.subject, self.creator, self.producer))

    @property
    def formatted_size(self) -> str:
        return format_file_size(self.file_size)

    @property
    def permission_summary(self) -> str:
        if not self.is_encrypted:
            return "Full permissions"
        if not self.permissions:
            return "Restricted permissions"
        return f"{len(self.permissions)} of {len(PERMISSIONS)} permissions"

    @property
    def encryption_info(self) -> Dict[str, Any]:
        return {
            "encrypted": self.is_encrypted,
            "method": self.encryption_method,
            "key_length": self.key_length,
            "user_password": self.user_password,
            "owner_password": self.owner_password,
        }

    @property
    def permission_flags(self) -> Dict[str, bool]:
        return {flag: getattr(self, f"{flag}_allowed") for flag in _FLAG_NAMES.values()}

    @property
    def has_restricted_permissions(self) -> bool:
        return not all(self.permission_flags.values())

    @property
    def metadata_map(self) -> Dict[str, str]:
        values = {name: getattr(self, name.lower()) for name in METADATA_FIELDS}
        return {name: value for name, value in values.items() if value}

    def sorted_permissions(self) -> List[str]:
        return [name for name in PERMISSIONS if name in self.permissions]

    def replace(self, **changes: Any) -> "PDFInfo":
        """Return a copy with *changes* applied and the permission view re-derived."""

        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "file_size": self.file_size,
            "page_count": self.page_count,
            "version": self.version,
            "engine_version": self.engine_version,
            "encryption": self.encryption_info,
            "permissions": self.sorted_permissions(),
            "permission_flags": self.permission_flags,
            "metadata": self.metadata_map,
        }


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class MergeJob:
    """
    One entry of a batch sweep.

    Status moves ``PENDING -> RUNNING -> COMPLETED | FAILED``; a terminal
    status is set exactly once.
    """

    inputs: List[Path]
    output: Optional[Path] = None
    name: str = ""
    status: JobStatus = JobStatus.PENDING
    error: Optional[BaseException] = None
    result: Optional[Path] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.inputs = [Path(item) for item in self.inputs]
        if self.output is not None:
            self.output = Path(self.output)

    def start(self) -> None:
        if self.status is not JobStatus.PENDING:
            raise ValueError(f"cannot start job in state {self.status.value}")
        self.status = JobStatus.RUNNING
        self.started_at = datetime.now()

    def complete(self, result: Optional[Path] = None) -> None:
        self._finish(JobStatus.COMPLETED)
        self.result = result

    def fail(self, error: BaseException) -> None:
        self._finish(JobStatus.FAILED)
        self.error = error

    def _finish(self, status: JobStatus) -> None:
        if self.status is not JobStatus.RUNNING:
            raise ValueError(f"cannot finish job in state {self.status.value}")
        self.status = status
        self.finished_at = datetime.now()

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def __str__(self) -> str:
        if self.status is JobStatus.FAILED:
            return f"MergeJob({self.name or self.output}, failed: {self.error})"
        return f"MergeJob({self.name or self.output}, {self.status.value})"


@dataclass(frozen=True)
class RollbackToken:
    """Snapshot of a destination taken before it is mutated."""

    backup_path: Path
    original_path: Path
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class OutputInfo:
    """Result of resolving an output path."""

    final_path: Path
    original_path: Path
    backup_path: Optional[Path] = None
    is_incremented: bool = False
    has_timestamp: bool = False


@dataclass
class DecryptResult:
    """
    Outcome of a decryption run.

    Attributes:
        success: Whether a readable file is available at ``decrypted_path``
        decrypted_path: Decrypted copy, or the source itself when it was not encrypted
        used_password: Password that opened the file
        attempt_count: Number of candidates handed to the engine
        processing_time: Wall-clock seconds spent
        is_original: ``True`` when the source was not encrypted
    """

    success: bool
    decrypted_path: Optional[Path] = None
    used_password: Optional[str] = None
    attempt_count: int = 0
    processing_time: float = 0.0
    is_original: bool = False

    def __str__(self) -> str:
        if self.is_original:
            return f"DecryptResult(original={self.decrypted_path})"
        if self.success:
            return f"DecryptResult(success=True, attempts={self.attempt_count})"
        return f"DecryptResult(success=False, attempts={self.attempt_count})"


@dataclass(frozen=True)
class MergeStep:
    """One engine ``merge`` call in a merge plan."""

    inputs: List[Path]
    output: Path
    is_final: bool = False


@dataclass
class MergePlan:
    """Ordered engine calls needed to merge a list of inputs."""

    output: Path
    batch_size: int
    steps: List[MergeStep] = field(default_factory=list)

    @property
    def engine_calls(self) -> int:
        return len(self.steps)

    @property
    def batch_files(self) -> List[Path]:
        return [step.output for step in self.steps if not step.is_final]

    @property
    def is_direct(self) -> bool:
        return len(self.steps) == 1


__all__ = [
    "PERMISSIONS",
    "METADATA_FIELDS",
    "normalize_permissions",
    "PDFInfo",
    "JobStatus",
    "MergeJob",
    "RollbackToken",
    "OutputInfo",
    "DecryptResult",
    "MergeStep",
    "MergePlan",
]
