"""In-process engine adapter built on :mod:`pypdf`."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pypdf
from pypdf import PdfReader, PdfWriter
from pypdf.generic import DictionaryObject

from ..errors import ErrorKind, PdfError, classify_error
from ..types import PDFInfo
from ..utils import PathLike, ensure_path

LOGGER = logging.getLogger("pdfops.engines.pypdf")

# Standard security handler /P bits (PDF 32000-1, table 22).
PERMISSION_BITS = {
    "print": 1 << 2,
    "modify": 1 << 3,
    "copy": 1 << 4,
    "annotate": 1 << 5,
    "fill": 1 << 8,
    "extract": 1 << 9,
    "assemble": 1 << 10,
    "print_high": 1 << 11,
}


def permissions_from_flags(flags: int) -> List[str]:
    return [name for name, bit in PERMISSION_BITS.items() if flags & bit]


def _encryption_details(reader: PdfReader) -> Dict[str, Any]:
    encrypt = reader.trailer.get("/Encrypt")
    if encrypt is None:
        return {}
    encrypt = encrypt.get_object()

    revision = int(encrypt.get("/V", 0))
    key_length = int(encrypt.get("/Length", 40))
    method = "RC4"
    if revision >= 4:
        filters = encrypt.get("/CF")
        crypt_filter = filters.get_object().get("/StdCF") if isinstance(filters, DictionaryObject) else None
        cfm = str(crypt_filter.get_object().get("/CFM", "")) if crypt_filter is not None else ""
        if cfm == "/AESV2":
            method, key_length = "AES", 128
        elif cfm == "/AESV3" or revision == 5:
            method, key_length = "AES", 256

    return {
        "method": method,
        "key_length": key_length,
        "permissions": permissions_from_flags(int(encrypt.get("/P", 0))),
        "owner_password": "/O" in encrypt,
    }


def _copy_reader_contents(reader: PdfReader) -> PdfWriter:
    writer = PdfWriter()
    writer.clone_reader_document_root(reader)

    metadata = reader.metadata
    if metadata:
        writer.add_metadata(
            {
                key: str(value)
                for key, value in metadata.items()
                if isinstance(key, str) and value is not None
            }
        )

    return writer


def _metadata_text(metadata: Any, key: str) -> str:
    if not metadata:
        return ""
    value = metadata.get(key)
    if value is None:
        return ""
    return str(value).lstrip("/") if key == "/Trapped" else str(value)


class PypdfEngine:
    """Engine running inside the interpreter on top of ``pypdf``."""

    name = "library"

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def version(self) -> str:
        return f"pypdf {pypdf.__version__}"

    def _open(self, path: Path, *, strict: bool = False) -> PdfReader:
        try:
            return PdfReader(str(path), strict=strict)
        except Exception as exc:  # pypdf exceptions vary
            LOGGER.error("Failed to read PDF %s: %s", path, exc)
            raise classify_error(exc, str(path)) from exc

    def _try_decrypt(self, reader: PdfReader, password: str, path: Path) -> bool:
        try:
            return reader.decrypt(password) != 0
        except Exception as exc:  # decrypt errors vary
            raise classify_error(exc, str(path)) from exc

    def validate(self, path: PathLike, *, strict: bool = False) -> None:
        pdf_path = ensure_path(path)
        LOGGER.debug("Validating PDF at %s (strict=%s)", pdf_path, strict)
        with self._lock:
            reader = self._open(pdf_path, strict=strict)
            if reader.is_encrypted and not self._try_decrypt(reader, "", pdf_path):
                raise PdfError(ErrorKind.ENCRYPTED, "password required to validate", str(pdf_path))
            try:
                page_count = len(reader.pages)
            except Exception as exc:  # pragma: no cover - pypdf exceptions vary
                raise classify_error(exc, str(pdf_path)) from exc

        if page_count == 0:
            LOGGER.error("PDF %s contains no pages", pdf_path)
            raise PdfError(ErrorKind.INVALID_FILE, "PDF contains no pages", str(pdf_path))
        LOGGER.info("Validated PDF %s successfully", pdf_path)

    def info(self, path: PathLike) -> PDFInfo:
        pdf_path = ensure_path(path)
        LOGGER.debug("Gathering PDF info for %s", pdf_path)
        with self._lock:
            reader = self._open(pdf_path)
            encrypted = bool(reader.is_encrypted)
            details: Dict[str, Any] = {}
            readable = True
            if encrypted:
                details = _encryption_details(reader)
                readable = self._try_decrypt(reader, "", pdf_path)
            try:
                page_count: Optional[int] = len(reader.pages) if readable else None
                metadata = reader.metadata if readable else None
                header = reader.pdf_header
            except Exception as exc:  # pragma: no cover - pypdf exceptions vary
                raise classify_error(exc, str(pdf_path)) from exc

        info = PDFInfo(
            path=pdf_path,
            file_size=pdf_path.stat().st_size,
            page_count=page_count,
            version=header.replace("%PDF-", "").strip(),
            is_encrypted=encrypted,
            encryption_method=details.get("method", ""),
            key_length=details.get("key_length", 0),
            user_password=encrypted and not readable,
            owner_password=details.get("owner_password", False),
            permissions=frozenset(details.get("permissions", ())),
            title=_metadata_text(metadata, "/Title"),
            author=_metadata_text(metadata, "/Author"),
            subject=_metadata_text(metadata, "/Subject"),
            creator=_metadata_text(metadata, "/Creator"),
            producer=_metadata_text(metadata, "/Producer"),
            keywords=_metadata_text(metadata, "/Keywords"),
            trapped=_metadata_text(metadata, "/Trapped"),
            engine_version=self.version(),
        )
        LOGGER.info("PDF info: path=%s, pages=%s, encrypted=%s", pdf_path, info.page_count, info.is_encrypted)
        return info

    def is_encrypted(self, path: PathLike) -> bool:
        pdf_path = ensure_path(path)
        with self._lock:
            return bool(self._open(pdf_path).is_encrypted)

    def decrypt(self, source: PathLike, destination: PathLike, password: str) -> Path:
        source_path = ensure_path(source)
        destination_path = ensure_path(destination)
        destination_path.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            reader = self._open(source_path)
            if not reader.is_encrypted:
                raise PdfError(ErrorKind.PROCESSING, "input PDF is not encrypted", str(source_path))
            if not self._try_decrypt(reader, password, source_path):
                raise PdfError(ErrorKind.ENCRYPTED, "incorrect password", str(source_path))

            writer = _copy_reader_contents(reader)
            try:
                with destination_path.open("wb") as stream:
                    writer.write(stream)
            except Exception as exc:  # IO errors vary
                LOGGER.error("Unable to write PDF to %s: %s", destination_path, exc)
                raise classify_error(exc, str(destination_path)) from exc

        LOGGER.info("Decrypted %s into %s", source_path, destination_path)
        return destination_path

    def merge(self, inputs: Sequence[PathLike], destination: PathLike) -> Path:
        pdf_paths = [ensure_path(item) for item in inputs]
        if not pdf_paths:
            raise PdfError(ErrorKind.INVALID_FILE, "no files to merge")

        output_path = ensure_path(destination)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            writer = PdfWriter()
            first_metadata: Optional[Dict[str, str]] = None
            for pdf_path in pdf_paths:
                LOGGER.debug("Processing input PDF %s", pdf_path)
                reader = self._open(pdf_path)
                if reader.is_encrypted and not self._try_decrypt(reader, "", pdf_path):
                    raise PdfError(ErrorKind.ENCRYPTED, "encrypted input needs a password", str(pdf_path))
                try:
                    for page in reader.pages:
                        writer.add_page(page)
                    if first_metadata is None and reader.metadata:
                        first_metadata = {
                            key: str(value)
                            for key, value in reader.metadata.items()
                            if isinstance(key, str) and value is not None
                        }
                except Exception as exc:  # pypdf exceptions vary
                    raise classify_error(exc, str(pdf_path)) from exc

            if first_metadata:
                writer.add_metadata(first_metadata)

            try:
                with output_path.open("wb") as output_handle:
                    writer.write(output_handle)
            except Exception as exc:  # IO errors vary
                LOGGER.error("Failed to write merged PDF to %s: %s", output_path, exc)
                raise classify_error(exc, str(output_path)) from exc

        LOGGER.info("Merged %d PDFs into %s", len(pdf_paths), output_path)
        return output_path


__all__ = ["PypdfEngine", "PERMISSION_BITS", "permissions_from_flags"]
