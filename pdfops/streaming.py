"""
Bounded-batch merging for large input lists.

Up to ``batch_size`` inputs are merged in one engine call. Longer lists are
merged chunk by chunk into ``<output>.batch_<i>.pdf`` intermediates which are
then merged, in order, into the final output. Intermediates never outlive the
merge.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, TextIO, Union

from .cancellation import CancellationToken, check_cancelled
from .engines.base import PDFEngine
from .errors import ErrorKind, PdfError
from .retry import RecoveryManager, RetryManager
from .types import MergePlan, MergeStep
from .utils import PathLike, ensure_iterable, ensure_path, remove_quietly

LOGGER = logging.getLogger("pdfops.streaming")


def batch_file(output: PathLike, index: int) -> Path:
    return Path(f"{ensure_path(output)}.batch_{index}.pdf")


def plan_merge(inputs: Sequence[PathLike], output: PathLike, batch_size: int) -> MergePlan:
    """Return the engine calls needed to merge *inputs* into *output*."""

    if batch_size < 1:
        raise PdfError(ErrorKind.INVALID_INPUT, "batch_size must be >= 1")
    paths = ensure_iterable(inputs)
    if not paths:
        raise PdfError(ErrorKind.INVALID_FILE, "no files to merge")

    output_path = ensure_path(output)
    plan = MergePlan(output=output_path, batch_size=batch_size)
    if len(paths) <= batch_size:
        plan.steps.append(MergeStep(inputs=paths, output=output_path, is_final=True))
        return plan

    for index, start in enumerate(range(0, len(paths), batch_size)):
        plan.steps.append(MergeStep(inputs=paths[start:start + batch_size], output=batch_file(output_path, index)))
    plan.steps.append(MergeStep(inputs=plan.batch_files, output=output_path, is_final=True))
    return plan


class StreamingMerger:
    """Merge arbitrarily many inputs while keeping each engine call bounded.

    With *retry* set, every engine call runs through its ``execute``.
    """

    def __init__(
        self,
        engine: PDFEngine,
        *,
        batch_size: int = 10,
        retry: Optional[Union[RetryManager, RecoveryManager]] = None,
    ) -> None:
        if batch_size < 1:
            raise PdfError(ErrorKind.INVALID_INPUT, "batch_size must be >= 1")
        self.engine = engine
        self.batch_size = batch_size
        self.retry = retry

    def plan(self, inputs: Sequence[PathLike], output: PathLike, batch_size: Optional[int] = None) -> MergePlan:
        return plan_merge(inputs, output, batch_size or self.batch_size)

    def _merge(self, step: MergeStep, cancel: Optional[CancellationToken]) -> Path:
        def call() -> Path:
            return self.engine.merge(step.inputs, step.output)

        if self.retry is None:
            return call()
        return self.retry.execute(call, cancel)

    @staticmethod
    def _report(progress: Optional[TextIO], message: str) -> None:
        LOGGER.debug(message)
        if progress is not None:
            progress.write(message + "\n")

    @staticmethod
    def _remove(paths: List[Path]) -> None:
        for path in paths:
            try:
                remove_quietly(path)
            except OSError as exc:
                LOGGER.warning("Failed to remove batch file %s: %s", path, exc)

    def merge(
        self,
        inputs: Sequence[PathLike],
        output: PathLike,
        *,
        progress: Optional[TextIO] = None,
        batch_size: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Path:
        """Merge *inputs* into *output*, preserving input order."""

        plan = self.plan(inputs, output, batch_size)
        check_cancelled(cancel)

        if plan.is_direct:
            step = plan.steps[0]
            self._report(progress, f"merging {len(step.inputs)} files")
            result = self._merge(step, cancel)
            LOGGER.info("Merged %d PDFs into %s", len(step.inputs), result)
            return result

        *batches, final = plan.steps
        produced: List[Path] = []
        try:
            for index, step in enumerate(batches):
                check_cancelled(cancel)
                self._report(progress, f"batch {index + 1}/{len(batches)}: merging {len(step.inputs)} files")
                produced.append(step.output)
                self._merge(step, cancel)

            check_cancelled(cancel)
            self._report(progress, f"final: merging {len(batches)} batches")
            result = self._merge(final, cancel)
        finally:
            self._remove(produced)

        LOGGER.info("Merged %d PDFs into %s in %d batches", sum(len(s.inputs) for s in batches), result, len(batches))
        return result


__all__ = ["StreamingMerger", "plan_merge", "batch_file"]
