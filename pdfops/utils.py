"""Utility helpers shared across :mod:`pdfops`."""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Iterable, Union

PathLike = Union[str, Path]

_ENCRYPT_MARKER = b"/Encrypt"
_SCAN_CHUNK = 1024 * 1024


def ensure_path(path: PathLike) -> Path:
    """Return an absolute :class:`~pathlib.Path` for *path*."""

    resolved = Path(path).expanduser()
    try:
        return resolved.resolve(strict=False)
    except (OSError, RuntimeError):  # pragma: no cover - defensive
        return resolved.absolute()


def ensure_iterable(paths: Iterable[PathLike]) -> list[Path]:
    return [ensure_path(path) for path in paths]


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def configure_logging(level: Union[int, str] = logging.WARNING) -> logging.Logger:
    logger = get_logger("pdfops")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


def copy_file(source: PathLike, destination: PathLike) -> Path:
    """Copy *source* byte for byte onto *destination*."""

    destination_path = Path(destination)
    shutil.copyfile(source, destination_path)
    return destination_path


def remove_quietly(path: PathLike) -> bool:
    """Delete *path* if present; return ``True`` when something was removed."""

    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True


def atomic_write_json(path: PathLike, payload: Any) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", delete=False, dir=target.parent, suffix=".tmp", encoding="utf-8"
    ) as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        temp_path = Path(handle.name)
    temp_path.replace(target)
    return target


def has_encrypt_marker(path: PathLike) -> bool:
    """Cheap prefilter: does the raw file mention ``/Encrypt`` anywhere?

    This can report ``True`` for unencrypted files whose literals happen to
    contain the marker, so it is only ever used to upgrade an answer to
    "encrypted", never to downgrade one.
    """

    tail = b""
    with Path(path).open("rb") as handle:
        while True:
            chunk = handle.read(_SCAN_CHUNK)
            if not chunk:
                return False
            if _ENCRYPT_MARKER in tail + chunk:
                return True
            tail = chunk[-(len(_ENCRYPT_MARKER) - 1):]


def format_file_size(size_bytes: float) -> str:
    """
    Format file size in human-readable format.

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string (e.g., "1.5 MB", "500 B")
    """
    if size_bytes < 1024:
        return f"{int(size_bytes)} B"
    size_bytes /= 1024.0
    for unit in ["KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


__all__ = [
    "PathLike",
    "ensure_path",
    "ensure_iterable",
    "get_logger",
    "configure_logging",
    "copy_file",
    "remove_quietly",
    "atomic_write_json",
    "has_encrypt_marker",
    "format_file_size",
]
