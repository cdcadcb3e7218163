"""Engine adapter that drives the ``pdfcpu`` command line tool."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import ErrorKind, PdfError, classify_error
from ..types import PERMISSIONS, PDFInfo
from ..utils import PathLike, ensure_path

LOGGER = logging.getLogger("pdfops.engines.cli")

_TRUE_VALUES = {"true", "yes"}
_FALSE_VALUES = {"false", "no"}
_FULL_ACCESS = {"full access", "all", "full"}


def _cli_available(cli_path: str) -> str | None:
    return shutil.which(cli_path)


def _normalize_key(key: str) -> str:
    return " ".join(key.strip().lower().split())


def _parse_bool(value: str) -> Optional[bool]:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def _parse_int(value: str) -> Optional[int]:
    match = re.search(r"-?\d+", value)
    return int(match.group()) if match else None


def parse_info_output(output: str) -> Dict[str, str]:
    """Split ``info`` output into a ``{normalised key: value}`` mapping.

    Lines without a ``:`` separator are ignored; the first occurrence of a
    key wins.
    """

    fields: Dict[str, str] = {}
    for line in output.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = _normalize_key(key)
        if key and key not in fields:
            fields[key] = value.strip()
    return fields


def info_from_output(path: PathLike, output: str, *, engine_version: str = "") -> PDFInfo:
    """Build a :class:`PDFInfo` from ``pdfcpu info`` output."""

    fields = parse_info_output(output)

    page_count = _parse_int(fields.get("page count", ""))
    encrypted = _parse_bool(fields.get("encrypted", "")) or False

    raw_permissions = fields.get("permissions", "")
    if raw_permissions.lower() in _FULL_ACCESS:
        permissions: List[str] = list(PERMISSIONS)
    else:
        permissions = [item for item in raw_permissions.split(",") if item.strip()]

    return PDFInfo(
        path=ensure_path(path),
        page_count=page_count if page_count is not None and page_count >= 0 else None,
        version=fields.get("pdf version", ""),
        is_encrypted=encrypted,
        encryption_method=fields.get("encryption method", ""),
        key_length=_parse_int(fields.get("key length", "")) or 0,
        user_password=_parse_bool(fields.get("user password", "")) or False,
        owner_password=_parse_bool(fields.get("owner password", "")) or False,
        permissions=frozenset(permissions),
        title=fields.get("title", ""),
        author=fields.get("author", ""),
        subject=fields.get("subject", ""),
        creator=fields.get("creator", ""),
        producer=fields.get("producer", ""),
        keywords=fields.get("keywords", ""),
        trapped=fields.get("trapped", ""),
        engine_version=engine_version,
    )


def parse_version_output(output: str) -> str:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    for line in lines:
        if "pdfcpu:" in line:
            parts = line.split()
            if len(parts) >= 2:
                return parts[1]
    return lines[0] if lines else "unknown"


class CliEngine:
    """Engine backed by a ``pdfcpu`` compatible executable.

    Every call spawns the binary and blocks until it exits; calls are
    serialised through an internal lock.
    """

    name = "cli"

    def __init__(self, cli_path: str = "pdfcpu", *, timeout: float = 30.0, merge_timeout: float = 60.0) -> None:
        self.cli_path = cli_path
        self.timeout = timeout
        self.merge_timeout = merge_timeout
        self._lock = threading.Lock()
        self._version: Optional[str] = None

    def _run(
        self,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        file: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> str:
        executable = _cli_available(self.cli_path)
        if not executable:
            raise PdfError(ErrorKind.IO, f"{self.cli_path} executable not found", file)

        command = [executable, *args]
        limit = timeout if timeout is not None else self.timeout
        LOGGER.debug(
            "Running engine command: %s",
            ["<password>" if secret is not None and part == secret else part for part in command],
        )
        with self._lock:
            try:
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=limit,
                )
            except subprocess.TimeoutExpired as exc:
                LOGGER.error("Engine command %s timed out after %ss", args[0], limit)
                raise PdfError(ErrorKind.IO, f"{args[0]} timed out after {limit:g} seconds", file, exc) from exc
            except OSError as exc:
                LOGGER.error("Failed to execute %s: %s", executable, exc)
                raise PdfError(ErrorKind.IO, f"failed to execute {self.cli_path}", file, exc) from exc

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip() or f"exit code {result.returncode}"
            LOGGER.error("Engine command %s failed with code %s: %s", args[0], result.returncode, detail)
            kind = classify_error(RuntimeError(detail)).kind
            raise PdfError(kind, f"{args[0]} failed: {detail}", file)
        return result.stdout or ""

    def version(self) -> str:
        if self._version is None:
            self._version = parse_version_output(self._run(["version"]))
        return self._version

    def validate(self, path: PathLike, *, strict: bool = False) -> None:
        pdf_path = ensure_path(path)
        mode = "strict" if strict else "relaxed"
        self._run(["validate", f"-mode={mode}", str(pdf_path)], file=str(pdf_path))
        LOGGER.info("Validated PDF %s successfully", pdf_path)

    def info(self, path: PathLike) -> PDFInfo:
        pdf_path = ensure_path(path)
        output = self._run(["info", str(pdf_path)], file=str(pdf_path))
        info = info_from_output(pdf_path, output, engine_version=self._version or "")
        try:
            info = info.replace(file_size=os.stat(pdf_path).st_size)
        except OSError as exc:
            LOGGER.warning("Unable to stat %s: %s", pdf_path, exc)
        LOGGER.info("PDF info: path=%s, pages=%s, encrypted=%s", pdf_path, info.page_count, info.is_encrypted)
        return info

    def is_encrypted(self, path: PathLike) -> bool:
        try:
            return self.info(path).is_encrypted
        except PdfError as exc:
            if exc.kind is ErrorKind.ENCRYPTED:
                return True
            raise

    def decrypt(self, source: PathLike, destination: PathLike, password: str) -> Path:
        source_path = ensure_path(source)
        destination_path = ensure_path(destination)
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        self._run(
            ["decrypt", "-upw", password, str(source_path), str(destination_path)],
            file=str(source_path),
            secret=password,
        )
        return destination_path

    def merge(self, inputs: Sequence[PathLike], destination: PathLike) -> Path:
        paths = [ensure_path(item) for item in inputs]
        if not paths:
            raise PdfError(ErrorKind.INVALID_FILE, "no files to merge")
        destination_path = ensure_path(destination)
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        self._run(
            ["merge", str(destination_path), *(str(item) for item in paths)],
            timeout=self.merge_timeout,
            file=str(destination_path),
        )
        LOGGER.info("Merged %d PDFs into %s", len(paths), destination_path)
        return destination_path


__all__ = ["CliEngine", "parse_info_output", "info_from_output", "parse_version_output"]
