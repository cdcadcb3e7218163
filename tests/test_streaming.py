from __future__ import annotations

import io
import math
from pathlib import Path

import pytest
from pypdf import PdfReader

from pdfops.cancellation import CancellationToken
from pdfops.config import RetryConfig
from pdfops.engines import PypdfEngine
from pdfops.errors import ErrorKind, PdfError
from pdfops.retry import RetryManager
from pdfops.streaming import StreamingMerger, batch_file, plan_merge


@pytest.mark.parametrize(
    ("count", "batch_size"),
    [(1, 1), (3, 3), (5, 10), (6, 5), (10, 3), (25, 4), (7, 1)],
)
def test_plan_engine_call_count(tmp_path: Path, count: int, batch_size: int) -> None:
    inputs = [tmp_path / f"{index}.pdf" for index in range(count)]
    plan = plan_merge(inputs, tmp_path / "out.pdf", batch_size)

    expected = 1 if count <= batch_size else math.ceil(count / batch_size) + 1
    assert plan.engine_calls == expected
    assert plan.steps[-1].is_final
    merged_inputs = [path for step in plan.steps if not step.is_final for path in step.inputs]
    if not plan.is_direct:
        assert merged_inputs == [path.resolve() for path in inputs]


def test_plan_rejects_bad_arguments(tmp_path: Path) -> None:
    with pytest.raises(PdfError) as excinfo:
        plan_merge([tmp_path / "a.pdf"], tmp_path / "out.pdf", 0)
    assert excinfo.value.kind is ErrorKind.INVALID_INPUT

    with pytest.raises(PdfError) as excinfo:
        plan_merge([], tmp_path / "out.pdf", 3)
    assert excinfo.value.kind is ErrorKind.INVALID_FILE


def test_batch_file_name(tmp_path: Path) -> None:
    assert batch_file(tmp_path / "out.pdf", 2).name == "out.pdf.batch_2.pdf"


def test_streaming_merge_hierarchy(fake_engine, fake_files, tmp_path: Path) -> None:
    inputs = fake_files(10)
    output = (tmp_path / "out.pdf").resolve()
    progress = io.StringIO()

    result = StreamingMerger(fake_engine, batch_size=3).merge(inputs, output, progress=progress)

    assert result == output
    calls = fake_engine.merge_calls()
    assert len(calls) == 5
    expected_batches = [Path(f"{output}.batch_{index}.pdf") for index in range(4)]
    assert [call[2] for call in calls[:4]] == expected_batches
    assert [len(call[1]) for call in calls[:4]] == [3, 3, 3, 1]
    assert calls[4][1] == expected_batches
    assert calls[4][2] == output
    assert fake_engine.existing_inputs[4] == [True] * 4
    assert not any(path.exists() for path in expected_batches)
    assert output.exists()
    assert progress.getvalue().splitlines() == [
        "batch 1/4: merging 3 files",
        "batch 2/4: merging 3 files",
        "batch 3/4: merging 3 files",
        "batch 4/4: merging 1 files",
        "final: merging 4 batches",
    ]


def test_small_merge_is_direct(fake_engine, fake_files, tmp_path: Path) -> None:
    progress = io.StringIO()
    StreamingMerger(fake_engine, batch_size=10).merge(fake_files(4), tmp_path / "out.pdf", progress=progress)

    assert len(fake_engine.merge_calls()) == 1
    assert progress.getvalue() == "merging 4 files\n"


def test_batch_size_override(fake_engine, fake_files, tmp_path: Path) -> None:
    StreamingMerger(fake_engine, batch_size=10).merge(fake_files(4), tmp_path / "out.pdf", batch_size=2)
    assert len(fake_engine.merge_calls()) == 3


def test_failed_batch_leaves_no_intermediates(fake_engine, fake_files, tmp_path: Path) -> None:
    inputs = fake_files(6)
    output = tmp_path / "out.pdf"
    merger = StreamingMerger(fake_engine, batch_size=2)

    original_merge = fake_engine.merge

    def flaky_merge(paths, destination):
        if len(fake_engine.merge_calls()) == 2:
            fake_engine.merge_failures.append(PdfError(ErrorKind.CORRUPTED, "bad input"))
        return original_merge(paths, destination)

    fake_engine.merge = flaky_merge

    with pytest.raises(PdfError) as excinfo:
        merger.merge(inputs, output)

    assert excinfo.value.kind is ErrorKind.CORRUPTED
    assert list(tmp_path.glob("*.batch_*.pdf")) == []


def test_retry_wraps_each_step(fake_engine, fake_files, tmp_path: Path) -> None:
    fake_engine.merge_failures.append(PdfError(ErrorKind.IO, "transient"))
    sleeps = []
    retry = RetryManager(RetryConfig(max_retries=2, timeout=None), sleep=sleeps.append)

    StreamingMerger(fake_engine, batch_size=2, retry=retry).merge(fake_files(3), tmp_path / "out.pdf")

    assert len(fake_engine.merge_calls()) == 4
    assert len(sleeps) == 1


def test_cancelled_merge_makes_no_engine_calls(fake_engine, fake_files, tmp_path: Path) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(PdfError) as excinfo:
        StreamingMerger(fake_engine, batch_size=2).merge(fake_files(5), tmp_path / "out.pdf", cancel=token)

    assert excinfo.value.kind is ErrorKind.IO
    assert fake_engine.merge_calls() == []


def test_rejects_non_positive_batch_size(fake_engine) -> None:
    with pytest.raises(PdfError):
        StreamingMerger(fake_engine, batch_size=0)


def test_page_count_is_preserved_with_pypdf(pdf_factory, tmp_path: Path) -> None:
    inputs = [pdf_factory(f"doc{index}.pdf", pages=index + 1, title=f"Doc {index}") for index in range(5)]
    output = tmp_path / "merged.pdf"

    StreamingMerger(PypdfEngine(), batch_size=2).merge(inputs, output)

    reader = PdfReader(str(output))
    assert len(reader.pages) == 1 + 2 + 3 + 4 + 5
    assert list(tmp_path.glob("*.batch_*.pdf")) == []
