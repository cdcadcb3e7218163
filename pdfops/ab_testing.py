"""
A/B comparison of two engines on the same workload.

Each comparison runs the operation against engine A and then engine B in the
same process, recording wall-clock duration and the change in process memory
around each run. That change, ``delta_alloc``, is measured as resident set
size, so it approximates allocated bytes rather than counting them. The
faster and leaner engine collects points; the higher total wins.
"""

from __future__ import annotations

import gc
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil

from .cancellation import CancellationToken, check_cancelled
from .engines.base import PDFEngine
from .errors import ErrorKind, PdfError
from .utils import PathLike, atomic_write_json, ensure_path

LOGGER = logging.getLogger("pdfops.ab_testing")

WINNER_A = "A"
WINNER_B = "B"
TIE = "tie"

CATEGORIES = ("merge", "decrypt", "write", "performance")
OTHER = "other"

SUCCESS_POINTS = 10.0
MAX_PERFORMANCE_POINTS = 20.0
MAX_MEMORY_POINTS = 10.0

# JSON key for the per-run memory delta.
ALLOC_KEY = "Δalloc"

Operation = Callable[[PDFEngine], Any]


def category_for(name: str) -> str:
    lowered = name.lower()
    for category in CATEGORIES:
        if category in lowered:
            return category
    return OTHER


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class RunResult:
    """Measurements of one engine run.

    ``delta_alloc`` is the growth of the process resident set size (psutil RSS)
    over the run, clamped at zero. It stands in for allocated bytes: memory
    the interpreter reuses does not show up, and pages the allocator keeps
    after a free are still counted. It is stored under the ``"Δalloc"``
    JSON key; results files that use ``"delta_alloc"`` load as well.
    """

    engine: str
    start_time: datetime
    end_time: datetime
    duration: float
    delta_alloc: int
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            ALLOC_KEY: self.delta_alloc,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunResult":
        return cls(
            engine=data["engine"],
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            duration=float(data["duration"]),
            delta_alloc=int(data[ALLOC_KEY] if ALLOC_KEY in data else data["delta_alloc"]),
            success=bool(data["success"]),
            error=data.get("error"),
        )


@dataclass
class ABComparison:
    test_id: str
    test_name: str
    result_a: RunResult
    result_b: RunResult
    performance_gain: float = 0.0
    memory_reduction: float = 0.0
    score_a: float = 0.0
    score_b: float = 0.0
    winner: str = TIE
    recommendation: str = ""
    category: str = OTHER
    generated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "test_name": self.test_name,
            "category": self.category,
            "result_a": self.result_a.to_dict(),
            "result_b": self.result_b.to_dict(),
            "performance_gain": self.performance_gain,
            "memory_reduction": self.memory_reduction,
            "score_a": self.score_a,
            "score_b": self.score_b,
            "winner": self.winner,
            "recommendation": self.recommendation,
            "generated_at": self.generated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ABComparison":
        return cls(
            test_id=data["test_id"],
            test_name=data["test_name"],
            result_a=RunResult.from_dict(data["result_a"]),
            result_b=RunResult.from_dict(data["result_b"]),
            performance_gain=float(data.get("performance_gain", 0.0)),
            memory_reduction=float(data.get("memory_reduction", 0.0)),
            score_a=float(data.get("score_a", 0.0)),
            score_b=float(data.get("score_b", 0.0)),
            winner=data.get("winner", TIE),
            recommendation=data.get("recommendation", ""),
            category=data.get("category") or category_for(data["test_name"]),
            generated_at=_parse_time(data.get("generated_at")) or datetime.now(),
        )


def score(result_a: RunResult, result_b: RunResult) -> Dict[str, Any]:
    """Compute gain, reduction, scores and winner for a pair of runs."""

    gain = (result_b.duration - result_a.duration) / result_b.duration * 100 if result_b.duration > 0 else 0.0
    reduction = (
        (result_b.delta_alloc - result_a.delta_alloc) / result_b.delta_alloc * 100 if result_b.delta_alloc > 0 else 0.0
    )

    score_a = SUCCESS_POINTS if result_a.success else 0.0
    score_b = SUCCESS_POINTS if result_b.success else 0.0
    if gain > 0:
        score_a += min(gain, MAX_PERFORMANCE_POINTS)
    elif gain < 0:
        score_b += min(-gain, MAX_PERFORMANCE_POINTS)
    if reduction > 0:
        score_a += min(reduction / 10, MAX_MEMORY_POINTS)
    elif reduction < 0:
        score_b += min(-reduction / 10, MAX_MEMORY_POINTS)

    if score_a > score_b:
        winner = WINNER_A
    elif score_b > score_a:
        winner = WINNER_B
    else:
        winner = TIE
    return {
        "performance_gain": gain,
        "memory_reduction": reduction,
        "score_a": score_a,
        "score_b": score_b,
        "winner": winner,
    }


def _recommendation(winner: str, name_a: str, name_b: str) -> str:
    if winner == WINNER_A:
        return f"Prefer engine A ({name_a})"
    if winner == WINNER_B:
        return f"Prefer engine B ({name_b})"
    return "Both engines perform comparably"


def _rss() -> Callable[[], int]:
    process = psutil.Process()
    return lambda: process.memory_info().rss


class ABTestFramework:
    """Run workloads against two engines and keep the comparisons by test id.

    Args:
        engine_a: First engine; a positive performance gain favours it.
        engine_b: Baseline engine.
        results_path: JSON file the results are saved to after every run.
        memory_probe: Returns current process memory in bytes; psutil RSS by default.
    """

    def __init__(
        self,
        engine_a: PDFEngine,
        engine_b: PDFEngine,
        *,
        results_path: Optional[PathLike] = None,
        memory_probe: Optional[Callable[[], int]] = None,
    ) -> None:
        self.engine_a = engine_a
        self.engine_b = engine_b
        self.results_path = ensure_path(results_path) if results_path is not None else None
        self._probe = memory_probe or _rss()
        self._results: Dict[str, ABComparison] = {}

    def _measure(self, engine: PDFEngine, operation: Operation) -> RunResult:
        gc.collect()
        before = self._probe()
        start_time = datetime.now()
        started = time.perf_counter()
        error: Optional[str] = None
        try:
            operation(engine)
        except Exception as exc:  # a failing run is a measurement, not a harness error
            LOGGER.debug("Engine %s run failed: %s", engine.name, exc)
            error = str(exc) or exc.__class__.__name__
        duration = time.perf_counter() - started
        end_time = datetime.now()
        gc.collect()
        after = self._probe()
        return RunResult(
            engine=engine.name,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            delta_alloc=max(0, after - before),
            success=error is None,
            error=error,
        )

    def run(
        self,
        test_id: str,
        test_name: str,
        operation: Operation,
        *,
        category: str = "",
        cancel: Optional[CancellationToken] = None,
    ) -> ABComparison:
        check_cancelled(cancel)
        result_a = self._measure(self.engine_a, operation)
        check_cancelled(cancel)
        result_b = self._measure(self.engine_b, operation)

        scored = score(result_a, result_b)
        comparison = ABComparison(
            test_id=test_id,
            test_name=test_name,
            result_a=result_a,
            result_b=result_b,
            recommendation=_recommendation(scored["winner"], self.engine_a.name, self.engine_b.name),
            category=category or category_for(test_name),
            **scored,
        )
        self._results[test_id] = comparison
        LOGGER.info(
            "A/B %s: winner=%s gain=%.2f%% memory=%.2f%%",
            test_id,
            comparison.winner,
            comparison.performance_gain,
            comparison.memory_reduction,
        )
        if self.results_path is not None:
            self.save()
        return comparison

    def results(self) -> Dict[str, ABComparison]:
        return dict(self._results)

    def save(self, path: Optional[PathLike] = None) -> Path:
        target = ensure_path(path) if path is not None else self.results_path
        if target is None:
            raise PdfError(ErrorKind.INVALID_INPUT, "no results path configured")
        payload = {test_id: comparison.to_dict() for test_id, comparison in self._results.items()}
        return atomic_write_json(target, payload)

    def load(self, path: Optional[PathLike] = None) -> Dict[str, ABComparison]:
        source = ensure_path(path) if path is not None else self.results_path
        if source is None:
            raise PdfError(ErrorKind.INVALID_INPUT, "no results path configured")
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise PdfError(ErrorKind.IO, "results file not found", str(source), exc) from exc
        except (OSError, ValueError) as exc:
            raise PdfError(ErrorKind.INVALID_INPUT, "unreadable results file", str(source), exc) from exc
        if not isinstance(data, dict):
            raise PdfError(ErrorKind.INVALID_INPUT, "results must be a JSON object", str(source))
        try:
            loaded = {test_id: ABComparison.from_dict(entry) for test_id, entry in data.items()}
        except (KeyError, TypeError, ValueError) as exc:
            raise PdfError(ErrorKind.INVALID_INPUT, "malformed results file", str(source), exc) from exc
        self._results.update(loaded)
        return loaded

    def generate_report(self) -> str:
        results = list(self._results.values())
        lines = [
            "# A/B Test Report",
            "",
            f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"Total tests: {len(results)}",
            "",
        ]
        for comparison in results:
            lines.extend(_comparison_lines(comparison, "##"))
        lines.extend(_summary_lines(summarize(results)))
        return "\n".join(lines)


def _percent(part: int, total: int) -> float:
    return part / total * 100 if total else 0.0


def _comparison_lines(comparison: ABComparison, heading: str) -> List[str]:
    return [
        f"{heading} {comparison.test_name}",
        f"- Test ID: {comparison.test_id}",
        f"- Winner: {comparison.winner}",
        f"- Recommendation: {comparison.recommendation}",
        f"- Engine A ({comparison.result_a.engine}): {comparison.result_a.duration:.3f}s",
        f"- Engine B ({comparison.result_b.engine}): {comparison.result_b.duration:.3f}s",
        f"- Performance gain: {comparison.performance_gain:.2f}%",
        f"- Memory reduction: {comparison.memory_reduction:.2f}%",
        "",
    ]


@dataclass
class CategoryStat:
    total_tests: int = 0
    a_wins: int = 0
    b_wins: int = 0
    ties: int = 0
    avg_performance_gain: float = 0.0
    avg_memory_reduction: float = 0.0


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime


@dataclass
class ABStatistics:
    total_tests: int = 0
    a_wins: int = 0
    b_wins: int = 0
    ties: int = 0
    avg_performance_gain: float = 0.0
    avg_memory_reduction: float = 0.0
    category_stats: Dict[str, CategoryStat] = field(default_factory=dict)
    time_range: Optional[TimeRange] = None


def _tally(stat: Any, winner: str) -> None:
    if winner == WINNER_A:
        stat.a_wins += 1
    elif winner == WINNER_B:
        stat.b_wins += 1
    else:
        stat.ties += 1


def summarize(comparisons: List[ABComparison]) -> ABStatistics:
    """Aggregate comparisons into totals, per-category figures and a time range."""

    stats = ABStatistics(total_tests=len(comparisons))
    if not comparisons:
        return stats

    for comparison in comparisons:
        _tally(stats, comparison.winner)
        category = stats.category_stats.setdefault(comparison.category, CategoryStat())
        category.total_tests += 1
        _tally(category, comparison.winner)
        # running means
        category.avg_performance_gain += (comparison.performance_gain - category.avg_performance_gain) / category.total_tests
        category.avg_memory_reduction += (comparison.memory_reduction - category.avg_memory_reduction) / category.total_tests

    stats.avg_performance_gain = sum(c.performance_gain for c in comparisons) / len(comparisons)
    stats.avg_memory_reduction = sum(c.memory_reduction for c in comparisons) / len(comparisons)
    stamps = [comparison.generated_at for comparison in comparisons]
    stats.time_range = TimeRange(start=min(stamps), end=max(stamps))
    return stats


def _summary_lines(stats: ABStatistics) -> List[str]:
    total = stats.total_tests
    return [
        "## Summary",
        f"- Engine A wins: {stats.a_wins} ({_percent(stats.a_wins, total):.1f}%)",
        f"- Engine B wins: {stats.b_wins} ({_percent(stats.b_wins, total):.1f}%)",
        f"- Ties: {stats.ties} ({_percent(stats.ties, total):.1f}%)",
        f"- Average performance gain: {stats.avg_performance_gain:.2f}%",
        f"- Average memory reduction: {stats.avg_memory_reduction:.2f}%",
        "",
    ]


@dataclass
class ABTestCase:
    id: str
    name: str
    operation: Operation
    description: str = ""
    category: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    expected: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.category:
            self.category = category_for(self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "parameters": self.parameters,
            "expected": self.expected,
        }


@dataclass
class ABTestSuite:
    id: str
    name: str
    cases: List[ABTestCase] = field(default_factory=list)
    created: datetime = field(default_factory=datetime.now)
    modified: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cases": [case.to_dict() for case in self.cases],
            "created": self.created.isoformat(),
            "modified": self.modified.isoformat(),
        }


class ABTestManager:
    """Organise test cases into suites and aggregate their comparisons."""

    def __init__(self, framework: ABTestFramework) -> None:
        self.framework = framework
        self.suites: Dict[str, ABTestSuite] = {}

    def create_suite(self, suite_id: str, name: str) -> ABTestSuite:
        suite = ABTestSuite(id=suite_id, name=name)
        self.suites[suite_id] = suite
        return suite

    def _suite(self, suite_id: str) -> ABTestSuite:
        try:
            return self.suites[suite_id]
        except KeyError:
            raise PdfError(ErrorKind.INVALID_INPUT, f"unknown test suite: {suite_id}") from None

    def add_case(self, suite_id: str, case: ABTestCase) -> None:
        suite = self._suite(suite_id)
        suite.cases.append(case)
        suite.modified = datetime.now()

    def run_suite(self, suite_id: str, cancel: Optional[CancellationToken] = None) -> List[ABComparison]:
        suite = self._suite(suite_id)
        comparisons = []
        for case in suite.cases:
            comparisons.append(
                self.framework.run(
                    f"{suite_id}_{case.id}",
                    case.name,
                    case.operation,
                    category=case.category,
                    cancel=cancel,
                )
            )
        return comparisons

    def statistics(self) -> ABStatistics:
        return summarize(list(self.framework.results().values()))

    def top_performers(self, limit: int = 5) -> List[ABComparison]:
        ranked = sorted(self.framework.results().values(), key=lambda c: c.performance_gain, reverse=True)
        return ranked[:limit]

    def worst_performers(self, limit: int = 5) -> List[ABComparison]:
        ranked = sorted(self.framework.results().values(), key=lambda c: c.performance_gain)
        return ranked[:limit]

    def generate_report(self) -> str:
        stats = self.statistics()
        lines = ["# A/B Test Detailed Report", "", f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}"]
        if stats.time_range is not None:
            lines.append(
                f"Time range: {stats.time_range.start:%Y-%m-%d %H:%M:%S} - {stats.time_range.end:%Y-%m-%d %H:%M:%S}"
            )
        lines.extend([f"Total tests: {stats.total_tests}", ""])
        lines.extend(_summary_lines(stats))

        lines.append("## Categories")
        for name, category in sorted(stats.category_stats.items()):
            lines.extend(
                [
                    f"### {name}",
                    f"- Tests: {category.total_tests}",
                    f"- Engine A wins: {category.a_wins} ({_percent(category.a_wins, category.total_tests):.1f}%)",
                    f"- Engine B wins: {category.b_wins} ({_percent(category.b_wins, category.total_tests):.1f}%)",
                    f"- Ties: {category.ties} ({_percent(category.ties, category.total_tests):.1f}%)",
                    f"- Average performance gain: {category.avg_performance_gain:.2f}%",
                    f"- Average memory reduction: {category.avg_memory_reduction:.2f}%",
                    "",
                ]
            )

        for title, entries in (("Top performers", self.top_performers()), ("Worst performers", self.worst_performers())):
            if entries:
                lines.append(f"## {title}")
                lines.extend(
                    f"{index}. {comparison.test_name} ({comparison.performance_gain:.2f}%)"
                    for index, comparison in enumerate(entries, start=1)
                )
                lines.append("")

        lines.append("## Results")
        for comparison in self.framework.results().values():
            lines.extend(_comparison_lines(comparison, "###"))
        return "\n".join(lines)


__all__ = [
    "ABTestFramework",
    "ABTestManager",
    "ABTestCase",
    "ABTestSuite",
    "ABComparison",
    "ABStatistics",
    "CategoryStat",
    "TimeRange",
    "RunResult",
    "category_for",
    "score",
    "summarize",
    "WINNER_A",
    "WINNER_B",
    "TIE",
]
