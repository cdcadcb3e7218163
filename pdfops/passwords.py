"""
Password cache, dictionary management and strength scoring.

The cache maps a hash of the file path to the password that last opened the
file. Entries are advisory: callers always re-verify a cached password with
the engine and evict it when it no longer works.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .errors import ErrorKind, PdfError
from .utils import PathLike, atomic_write_json, ensure_path

LOGGER = logging.getLogger("pdfops.passwords")

T = TypeVar("T")

CACHE_FILENAME = "pdf_password_cache.json"
STATS_FILENAME = "pdf_password_stats.json"

# Tried in order by the decryptor when no dictionary is supplied.
DEFAULT_PASSWORDS: Tuple[str, ...] = (
    "",
    "123456",
    "password",
    "123456789",
    "12345678",
    "12345",
    "1234567",
    "1234567890",
    "qwerty",
    "abc123",
    "111111",
    "123123",
    "admin",
    "letmein",
    "welcome",
    "monkey",
    "1234",
    "dragon",
    "pass",
    "master",
    "hello",
    "freedom",
    "whatever",
    "qazwsx",
    "trustno1",
    "000000",
    "654321",
    "password1",
    "iloveyou",
    "sunshine",
    "princess",
    "football",
    "baseball",
    "shadow",
    "superman",
    "michael",
    "jennifer",
    "pdf",
    "PDF",
    "secret",
    "test",
)

# Passwords penalised by the strength check (compared case-insensitively).
COMMON_PASSWORDS = frozenset(
    {
        "123456", "password", "123456789", "12345678", "12345",
        "qwerty", "abc123", "111111", "123123", "admin",
        "letmein", "welcome", "monkey", "1234", "dragon",
        "pass", "master", "hello", "freedom", "whatever",
    }
)

_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")


@dataclass
class PasswordStrength:
    score: int
    level: str
    suggestions: List[str] = field(default_factory=list)


@dataclass
class PasswordStats:
    """Snapshot of the success counters."""

    total_successes: int
    unique_passwords: int
    cached_files: int
    most_used: List[Tuple[str, int]] = field(default_factory=list)


def file_key(path: PathLike) -> str:
    """Cache key for *path*: lower-case hex MD5 of the absolute path string."""

    return hashlib.md5(str(ensure_path(path)).encode("utf-8")).hexdigest()


def _has_repeating_chars(password: str) -> bool:
    return any(password[i] == password[i + 1] == password[i + 2] for i in range(len(password) - 2))


def password_strength(password: str) -> PasswordStrength:
    """Score *password*: length tiers, character classes, repeat and common-list penalties."""

    score = 0
    suggestions: List[str] = []

    if len(password) < 6:
        suggestions.append("Use at least 6 characters")
    elif len(password) >= 8:
        score += 20
    else:
        score += 10

    for pattern, bonus, hint in (
        (_LOWER, 15, "Add lowercase letters"),
        (_UPPER, 15, "Add uppercase letters"),
        (_DIGIT, 15, "Add digits"),
        (_SPECIAL, 20, "Add special characters"),
    ):
        if pattern.search(password):
            score += bonus
        else:
            suggestions.append(hint)

    if _has_repeating_chars(password):
        score -= 10
        suggestions.append("Avoid repeating the same character three times")
    if password.lower() in COMMON_PASSWORDS:
        score -= 20
        suggestions.append("Avoid common passwords")

    if len(password) >= 12:
        score += 15
    if len(password) >= 50:
        score += 25

    if score >= 80:
        level = "strong"
    elif score >= 45:
        level = "medium"
    else:
        level = "weak"
    return PasswordStrength(score=score, level=level, suggestions=suggestions)


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class PasswordManager:
    """Thread-safe password cache with a candidate dictionary and success counters.

    Args:
        passwords: Candidate dictionary; defaults to :data:`DEFAULT_PASSWORDS`.
        cache_dir: Directory holding the JSON cache and counter files.
        enable_cache: Load and persist the path -> password cache.
        enable_stats: Load and persist the success counters.
    """

    def __init__(
        self,
        passwords: Optional[Iterable[str]] = None,
        *,
        cache_dir: Optional[PathLike] = None,
        enable_cache: bool = False,
        enable_stats: bool = False,
    ) -> None:
        self._lock = _ReadWriteLock()
        self._cache: Dict[str, str] = {}
        self._counts: Dict[str, int] = {}
        self._dictionary: List[str] = list(DEFAULT_PASSWORDS if passwords is None else passwords)
        self.enable_cache = enable_cache
        self.enable_stats = enable_stats
        directory = ensure_path(cache_dir) if cache_dir is not None else Path(tempfile.gettempdir())
        self.cache_file = directory / CACHE_FILENAME
        self.stats_file = directory / STATS_FILENAME

        if enable_cache:
            self._cache.update(self._load(self.cache_file, str))
        if enable_stats:
            self._counts.update(self._load(self.stats_file, int))

    @staticmethod
    def _load(path: Path, value_type: type) -> Dict:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable password file %s: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Ignoring malformed password file %s", path)
            return {}
        return {str(key): value for key, value in data.items() if isinstance(value, value_type)}

    def _persist(self, *, cache: bool = False, stats: bool = False) -> None:
        targets = []
        if cache and self.enable_cache:
            targets.append((self.cache_file, self._cache))
        if stats and self.enable_stats:
            targets.append((self.stats_file, self._counts))
        for path, payload in targets:
            try:
                atomic_write_json(path, payload)
            except OSError as exc:
                LOGGER.warning("Failed to persist %s: %s", path, exc)

    def get(self, path: PathLike) -> Optional[str]:
        key = file_key(path)
        with self._lock.read():
            return self._cache.get(key)

    def set(self, path: PathLike, password: str) -> None:
        key = file_key(path)
        with self._lock.write():
            self._cache[key] = password
            self._counts[password] = self._counts.get(password, 0) + 1
            self._persist(cache=True, stats=True)
        LOGGER.debug("Cached password for %s", path)

    def remove(self, path: PathLike) -> None:
        key = file_key(path)
        with self._lock.write():
            if self._cache.pop(key, None) is not None:
                self._persist(cache=True)

    def clear(self) -> None:
        with self._lock.write():
            self._cache.clear()
            self._counts.clear()
            self._persist(cache=True, stats=True)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._cache)

    def common_passwords(self) -> List[str]:
        with self._lock.read():
            return list(self._dictionary)

    def set_common_passwords(self, passwords: Iterable[str]) -> None:
        with self._lock.write():
            self._dictionary = list(passwords)

    def add_common_password(self, password: str) -> None:
        with self._lock.write():
            if password not in self._dictionary:
                self._dictionary.append(password)

    def remove_common_password(self, password: str) -> None:
        with self._lock.write():
            if password in self._dictionary:
                self._dictionary.remove(password)

    def optimized_list(self) -> List[str]:
        """Passwords by descending success count, then unused dictionary entries."""

        with self._lock.read():
            ranked = sorted(self._counts.items(), key=lambda item: -item[1])
            result = [password for password, _ in ranked]
            seen = set(result)
            for password in self._dictionary:
                if password not in seen:
                    seen.add(password)
                    result.append(password)
        return result

    def stats(self, top: int = 10) -> PasswordStats:
        with self._lock.read():
            ranked = sorted(self._counts.items(), key=lambda item: -item[1])
            return PasswordStats(
                total_successes=sum(self._counts.values()),
                unique_passwords=len(self._counts),
                cached_files=len(self._cache),
                most_used=ranked[:top],
            )

    def strength(self, password: str) -> PasswordStrength:
        return password_strength(password)

    def batch_try(
        self,
        path: PathLike,
        passwords: Sequence[str],
        decrypt: Callable[[PathLike, str], T],
    ) -> Tuple[T, str]:
        """Open *path* with the cached password or the first working candidate.

        ``decrypt(path, password)`` must raise an ``ENCRYPTED``
        :class:`PdfError` for a wrong password; any other error aborts the
        search. A stale cache entry is evicted before the candidates run.
        """

        cached = self.get(path)
        if cached is not None:
            try:
                return decrypt(path, cached), cached
            except PdfError as exc:
                if exc.kind is not ErrorKind.ENCRYPTED:
                    raise
                LOGGER.info("Cached password for %s no longer works; evicting", path)
                self.remove(path)

        for password in passwords:
            try:
                result = decrypt(path, password)
            except PdfError as exc:
                if exc.kind is not ErrorKind.ENCRYPTED:
                    raise
                continue
            self.set(path, password)
            return result, password

        raise PdfError(ErrorKind.ENCRYPTED, f"all {len(passwords)} password(s) failed", str(path))


__all__ = [
    "PasswordManager",
    "PasswordStrength",
    "PasswordStats",
    "DEFAULT_PASSWORDS",
    "COMMON_PASSWORDS",
    "CACHE_FILENAME",
    "STATS_FILENAME",
    "file_key",
    "password_strength",
]
