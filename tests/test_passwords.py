from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path
from typing import List

import pytest

from pdfops.errors import ErrorKind, PdfError
from pdfops.passwords import (
    CACHE_FILENAME,
    DEFAULT_PASSWORDS,
    STATS_FILENAME,
    PasswordManager,
    file_key,
    password_strength,
)


def test_file_key_hashes_the_absolute_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    expected = hashlib.md5(str(tmp_path.resolve() / "doc.pdf").encode("utf-8")).hexdigest()
    assert file_key("doc.pdf") == expected
    assert file_key(tmp_path / "doc.pdf") == expected


def test_set_get_remove(tmp_path: Path) -> None:
    manager = PasswordManager()
    path = tmp_path / "a.pdf"

    manager.set(path, "secret")
    assert manager.get(path) == "secret"
    assert len(manager) == 1

    manager.set(path, "newer")
    assert manager.get(path) == "newer"

    manager.remove(path)
    assert manager.get(path) is None


def test_default_dictionary_starts_with_empty_password() -> None:
    manager = PasswordManager()
    assert manager.common_passwords()[0] == ""
    assert manager.common_passwords() == list(DEFAULT_PASSWORDS)


def test_dictionary_management() -> None:
    manager = PasswordManager(["a", "b"])
    manager.add_common_password("c")
    manager.add_common_password("a")
    assert manager.common_passwords() == ["a", "b", "c"]

    manager.remove_common_password("b")
    manager.remove_common_password("missing")
    assert manager.common_passwords() == ["a", "c"]

    manager.set_common_passwords(["z"])
    assert manager.common_passwords() == ["z"]


def test_optimized_list_ranks_successful_passwords_first(tmp_path: Path) -> None:
    manager = PasswordManager(["alpha", "beta", "gamma"])
    manager.set(tmp_path / "1.pdf", "gamma")
    manager.set(tmp_path / "2.pdf", "gamma")
    manager.set(tmp_path / "3.pdf", "custom")

    assert manager.optimized_list() == ["gamma", "custom", "alpha", "beta"]

    stats = manager.stats()
    assert stats.total_successes == 3
    assert stats.unique_passwords == 2
    assert stats.cached_files == 3
    assert stats.most_used[0] == ("gamma", 2)


def test_clear_empties_cache_and_counters(tmp_path: Path) -> None:
    manager = PasswordManager()
    manager.set(tmp_path / "1.pdf", "x")
    manager.clear()
    assert len(manager) == 0
    assert manager.stats().total_successes == 0


def test_persistence_round_trip(tmp_path: Path) -> None:
    doc = tmp_path / "doc.pdf"
    manager = PasswordManager(cache_dir=tmp_path, enable_cache=True, enable_stats=True)
    manager.set(doc, "secret")

    assert (tmp_path / CACHE_FILENAME).exists()
    assert json.loads((tmp_path / STATS_FILENAME).read_text(encoding="utf-8")) == {"secret": 1}

    reloaded = PasswordManager(cache_dir=tmp_path, enable_cache=True, enable_stats=True)
    assert reloaded.get(doc) == "secret"
    assert reloaded.optimized_list()[0] == "secret"


def test_persistence_disabled_writes_nothing(tmp_path: Path) -> None:
    manager = PasswordManager(cache_dir=tmp_path)
    manager.set(tmp_path / "doc.pdf", "secret")
    assert not (tmp_path / CACHE_FILENAME).exists()


def test_corrupt_cache_file_is_ignored(tmp_path: Path) -> None:
    (tmp_path / CACHE_FILENAME).write_text("{broken", encoding="utf-8")
    (tmp_path / STATS_FILENAME).write_text("[1, 2]", encoding="utf-8")

    manager = PasswordManager(cache_dir=tmp_path, enable_cache=True, enable_stats=True)

    assert len(manager) == 0
    assert manager.stats().total_successes == 0


def test_concurrent_puts_are_all_visible(tmp_path: Path) -> None:
    manager = PasswordManager()

    def worker(offset: int) -> None:
        for index in range(50):
            manager.set(tmp_path / f"{offset}_{index}.pdf", f"pw{index}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(manager) == 200
    assert manager.get(tmp_path / "3_49.pdf") == "pw49"


def make_decrypt(correct: str, calls: List[str]):
    def decrypt(path, password: str) -> str:
        calls.append(password)
        if password != correct:
            raise PdfError(ErrorKind.ENCRYPTED, "incorrect password", str(path))
        return f"opened:{path}"

    return decrypt


def test_batch_try_finds_and_caches_password(tmp_path: Path) -> None:
    manager = PasswordManager()
    path = tmp_path / "doc.pdf"
    calls: List[str] = []

    result, password = manager.batch_try(path, ["a", "b", "c"], make_decrypt("b", calls))

    assert password == "b"
    assert result == f"opened:{path}"
    assert calls == ["a", "b"]
    assert manager.get(path) == "b"


def test_batch_try_uses_cached_password_first(tmp_path: Path) -> None:
    manager = PasswordManager()
    path = tmp_path / "doc.pdf"
    manager.set(path, "c")
    calls: List[str] = []

    _, password = manager.batch_try(path, ["a", "b", "c"], make_decrypt("c", calls))

    assert password == "c"
    assert calls == ["c"]


def test_batch_try_evicts_stale_cache_entry(tmp_path: Path) -> None:
    manager = PasswordManager()
    path = tmp_path / "doc.pdf"
    manager.set(path, "stale")
    calls: List[str] = []

    _, password = manager.batch_try(path, ["a"], make_decrypt("a", calls))

    assert calls == ["stale", "a"]
    assert password == "a"
    assert manager.get(path) == "a"


def test_batch_try_empty_dictionary(tmp_path: Path) -> None:
    with pytest.raises(PdfError) as excinfo:
        PasswordManager().batch_try(tmp_path / "doc.pdf", [], make_decrypt("x", []))
    assert excinfo.value.kind is ErrorKind.ENCRYPTED
    assert "all 0 password(s) failed" in excinfo.value.message


def test_batch_try_propagates_other_errors(tmp_path: Path) -> None:
    def decrypt(path, password: str) -> None:
        raise PdfError(ErrorKind.CORRUPTED, "bad xref", str(path))

    with pytest.raises(PdfError) as excinfo:
        PasswordManager().batch_try(tmp_path / "doc.pdf", ["a", "b"], decrypt)
    assert excinfo.value.kind is ErrorKind.CORRUPTED


def test_strength_of_strong_password() -> None:
    report = password_strength("Str0ng!Passw0rd#2024")
    assert report.score == 100
    assert report.level == "strong"
    assert report.suggestions == []


def test_strength_penalises_common_passwords() -> None:
    report = password_strength("password")
    assert report.level == "weak"
    assert "Avoid common passwords" in report.suggestions


def test_strength_penalises_repeats_and_short_passwords() -> None:
    report = password_strength("aaa")
    assert report.score == 5
    assert "Use at least 6 characters" in report.suggestions
    assert "Avoid repeating the same character three times" in report.suggestions


def test_strength_medium() -> None:
    report = PasswordManager().strength("Sunday2024")
    assert report.level == "medium"
