from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set

import pytest
from pypdf import PdfWriter

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pdfops.errors import ErrorKind, PdfError  # noqa: E402
from pdfops.retry import MemoryMonitor  # noqa: E402
from pdfops.types import PDFInfo  # noqa: E402


class FakeEngine:
    """In-memory engine that records every call.

    ``decrypt`` accepts only ``password``; ``merge`` writes a small marker
    file and then raises the next queued entry of ``merge_failures``.
    """

    def __init__(
        self,
        name: str = "fake",
        *,
        password: Optional[str] = None,
        encrypted: bool = False,
        invalid: Optional[Set[Path]] = None,
    ) -> None:
        self.name = name
        self.password = password
        self.encrypted = encrypted
        self.invalid = {Path(path) for path in invalid or ()}
        self.calls: List[tuple] = []
        self.merge_failures: List[BaseException] = []
        self.decrypt_failures: List[BaseException] = []
        self.existing_inputs: List[List[bool]] = []

    def version(self) -> str:
        return "fake 1.0"

    def validate(self, path, *, strict: bool = False) -> None:
        self.calls.append(("validate_strict" if strict else "validate", Path(path)))
        if Path(path) in self.invalid:
            raise PdfError(ErrorKind.CORRUPTED, "broken xref", str(path))

    def info(self, path) -> PDFInfo:
        self.calls.append(("info", Path(path)))
        return PDFInfo(path=Path(path), file_size=Path(path).stat().st_size, page_count=1, title="Fake")

    def is_encrypted(self, path) -> bool:
        self.calls.append(("is_encrypted", Path(path)))
        return self.encrypted

    def decrypt(self, source, destination, password: str) -> Path:
        self.calls.append(("decrypt", password))
        if self.decrypt_failures:
            raise self.decrypt_failures.pop(0)
        if password != self.password:
            raise PdfError(ErrorKind.ENCRYPTED, "incorrect password", str(source))
        target = Path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(Path(source).read_bytes())
        return target

    def merge(self, inputs: Sequence, destination) -> Path:
        paths = [Path(item) for item in inputs]
        self.calls.append(("merge", paths, Path(destination)))
        self.existing_inputs.append([path.exists() for path in paths])
        if not paths:
            raise PdfError(ErrorKind.INVALID_FILE, "no files to merge")
        target = Path(destination)
        target.write_bytes(b"%PDF-1.7\n% merged " + str(len(paths)).encode() + b"\n")
        if self.merge_failures:
            raise self.merge_failures.pop(0)
        return target

    def merge_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] == "merge"]

    def decrypt_calls(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "decrypt"]


@pytest.fixture(autouse=True)
def _reset_pdfops_logger():
    yield
    logger = logging.getLogger("pdfops")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def sample_pdf(tmp_path: Path) -> Path:
    pdf_path = tmp_path / "sample.pdf"
    writer = PdfWriter()
    for _ in range(3):
        writer.add_blank_page(width=200, height=200)
    writer.add_metadata({"/Producer": "pdfops-tests", "/Title": "Sample", "/Author": "Tester"})
    with pdf_path.open("wb") as stream:
        writer.write(stream)
    return pdf_path


@pytest.fixture()
def empty_pdf(tmp_path: Path) -> Path:
    pdf_path = tmp_path / "empty.pdf"
    writer = PdfWriter()
    with pdf_path.open("wb") as stream:
        writer.write(stream)
    return pdf_path


@pytest.fixture()
def pdf_factory(tmp_path: Path) -> Callable[..., Path]:
    def _create(filename: str, pages: int = 1, title: Optional[str] = None) -> Path:
        path = tmp_path / filename
        writer = PdfWriter()
        for _ in range(pages):
            writer.add_blank_page(width=72, height=72)
        if title is not None:
            writer.add_metadata({"/Title": title})
        with path.open("wb") as handle:
            writer.write(handle)
        return path

    return _create


@pytest.fixture()
def encrypted_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "locked.pdf"
    writer = PdfWriter()
    for _ in range(2):
        writer.add_blank_page(width=72, height=72)
    writer.encrypt(user_password="secret", owner_password="owner")
    with path.open("wb") as handle:
        writer.write(handle)
    return path


@pytest.fixture()
def fake_files(tmp_path: Path) -> Callable[[int], List[Path]]:
    def _create(count: int, prefix: str = "in") -> List[Path]:
        paths = []
        for index in range(count):
            path = tmp_path / f"{prefix}_{index}.pdf"
            path.write_bytes(b"%PDF-1.7\n% input " + str(index).encode() + b"\n")
            paths.append(path)
        return paths

    return _create


@pytest.fixture()
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def engine_factory() -> Callable[..., FakeEngine]:
    return FakeEngine


@pytest.fixture()
def quiet_memory() -> MemoryMonitor:
    return MemoryMonitor(max_bytes=1024, probe=lambda: 0)


@pytest.fixture()
def sleeps() -> List[float]:
    return []


def probe_sequence(values: Sequence[int], default: int) -> Callable[[], int]:
    queue = list(values)

    def _probe() -> int:
        return queue.pop(0) if queue else default

    return _probe


@pytest.fixture()
def probe_factory() -> Callable[..., Callable[[], int]]:
    return probe_sequence


@pytest.fixture()
def write_json() -> Callable[[Path, Dict], Path]:
    def _write(path: Path, payload: Dict) -> Path:
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write
