"""
Report generation for VaultPay conformance results.

Divergences are grouped by the field that disagreed. A ``state_digest``
divergence means the implementations hold different custody after the same
instruction, which is the most serious class and is listed first.
"""

import json
import os
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import click

from comparator import ComparisonResult, Divergence

# Most severe first; anything else sorts after these.
FIELD_SEVERITY = ["state_digest", "success", "error_code", "outcome", "events"]


@dataclass
class TestResult:
    """Result of a single vector."""
    vector_name: str
    suite_name: str
    passed: bool
    execution_time_ms: float
    comparison: Optional[ComparisonResult] = None
    error: Optional[str] = None

    @property
    def divergences(self) -> List[Divergence]:
        return list(self.comparison.divergences) if self.comparison else []


@dataclass
class SuiteResult:
    """Result of one vector file."""
    suite_name: str
    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int
    execution_time_ms: float
    test_results: List[TestResult]

    @property
    def pass_rate(self) -> float:
        if self.total_tests == 0:
            return 0.0
        return self.passed_tests / self.total_tests * 100

    @property
    def status(self) -> str:
        return "PASS" if self.failed_tests == 0 else "FAIL"


@dataclass
class ConformanceReport:
    timestamp: str
    clients: List[str]
    reference_client: str
    execution_time_ms: float
    suite_results: List[SuiteResult]
    divergences: List[Divergence] = field(default_factory=list)

    @property
    def total_suites(self) -> int:
        return len(self.suite_results)

    @property
    def total_tests(self) -> int:
        return sum(s.total_tests for s in self.suite_results)

    @property
    def total_passed(self) -> int:
        return sum(s.passed_tests for s in self.suite_results)

    @property
    def total_failed(self) -> int:
        return sum(s.failed_tests for s in self.suite_results)

    @property
    def total_divergences(self) -> int:
        return len(self.divergences)

    @property
    def pass_rate(self) -> float:
        return self.total_passed / max(self.total_tests, 1) * 100

    def divergences_by_field(self) -> List[tuple]:
        """(field, count) pairs, most severe field first."""
        counts = Counter(d.field for d in self.divergences)

        def rank(name: str) -> int:
            return FIELD_SEVERITY.index(name) if name in FIELD_SEVERITY else len(FIELD_SEVERITY)

        return sorted(counts.items(), key=lambda item: (rank(item[0]), item[0]))

    def errors(self) -> List[TestResult]:
        return [t for s in self.suite_results for t in s.test_results if t.error]


class ReportGenerator:
    """Writes conformance reports under ``result_dir``."""

    def __init__(self, result_dir: str):
        self.result_dir = result_dir
        os.makedirs(result_dir, exist_ok=True)

    def generate_report(
        self,
        suite_results: List[SuiteResult],
        clients: List[str],
        reference_client: str,
        execution_time_ms: float,
    ) -> ConformanceReport:
        divergences = [
            d for suite in suite_results for test in suite.test_results for d in test.divergences
        ]
        return ConformanceReport(
            timestamp=datetime.now(timezone.utc).isoformat(),
            clients=clients,
            reference_client=reference_client,
            execution_time_ms=execution_time_ms,
            suite_results=suite_results,
            divergences=divergences,
        )

    def _path(self, filename: str) -> str:
        return os.path.join(self.result_dir, filename)

    def write_json_report(
        self,
        report: ConformanceReport,
        filename: str = "conformance-report.json",
    ) -> str:
        path = self._path(filename)
        with open(path, "w") as f:
            json.dump(self._report_to_dict(report), f, indent=2)
        return path

    def write_summary(
        self,
        report: ConformanceReport,
        filename: str = "conformance-summary.txt",
    ) -> str:
        """Write the human-readable summary and return its path."""
        path = self._path(filename)
        with open(path, "w") as f:
            f.write("\n".join(self._summary_lines(report)))
        return path

    def print_summary(self, report: ConformanceReport) -> None:
        for line in self._summary_lines(report, max_divergences=10):
            click.echo(line)
        status = "PASSED" if report.total_failed == 0 else "FAILED"
        click.secho(f"Overall: {status}", fg="green" if report.total_failed == 0 else "red")

    def _summary_lines(
        self, report: ConformanceReport, max_divergences: Optional[int] = None
    ) -> List[str]:
        rule = "=" * 60
        lines = [
            rule,
            "VaultPay Conformance Report",
            rule,
            f"Timestamp: {report.timestamp}",
            f"Reference: {report.reference_client}",
            f"Candidates: {', '.join(c for c in report.clients if c != report.reference_client)}",
            "",
            f"Vectors: {report.total_passed}/{report.total_tests} passed "
            f"({report.pass_rate:.1f}%) in {report.execution_time_ms:.2f}ms",
            "",
            "Suites:",
        ]
        for suite in report.suite_results:
            skipped = f", {suite.skipped_tests} skipped" if suite.skipped_tests else ""
            lines.append(
                f"  [{suite.status}] {suite.suite_name}: "
                f"{suite.passed_tests}/{suite.total_tests}{skipped}"
            )

        errors = report.errors()
        if errors:
            lines += ["", "Errors:"]
            lines += [f"  - {t.suite_name}/{t.vector_name}: {t.error}" for t in errors]

        if report.divergences:
            lines += ["", "Divergences by field:"]
            lines += [f"  {name}: {count}" for name, count in report.divergences_by_field()]
            lines += ["", "Divergences:"]
            shown = report.divergences[:max_divergences] if max_divergences else report.divergences
            for div in shown:
                lines.append(f"  - {div.vector_name} ({div.field}):")
                lines.append(f"      {div.reference_client}: {div.expected}")
                lines.append(f"      {div.client}: {div.actual}")
                if div.details:
                    lines.append(f"      {div.details}")
            hidden = len(report.divergences) - len(shown)
            if hidden:
                lines.append(f"  ... and {hidden} more")

        lines += ["", rule]
        return lines

    def _report_to_dict(self, report: ConformanceReport) -> Dict[str, Any]:
        return {
            "timestamp": report.timestamp,
            "clients": report.clients,
            "reference_client": report.reference_client,
            "total_suites": report.total_suites,
            "total_tests": report.total_tests,
            "total_passed": report.total_passed,
            "total_failed": report.total_failed,
            "total_divergences": report.total_divergences,
            "execution_time_ms": report.execution_time_ms,
            "divergences_by_field": dict(report.divergences_by_field()),
            "suite_results": [
                {
                    "suite_name": s.suite_name,
                    "status": s.status,
                    "total_tests": s.total_tests,
                    "passed_tests": s.passed_tests,
                    "failed_tests": s.failed_tests,
                    "skipped_tests": s.skipped_tests,
                    "execution_time_ms": s.execution_time_ms,
                    "failures": [
                        {"vector_name": t.vector_name, "error": t.error}
                        for t in s.test_results
                        if not t.passed
                    ],
                }
                for s in report.suite_results
            ],
            "divergences": [
                {**asdict(d), "expected": str(d.expected), "actual": str(d.actual)}
                for d in report.divergences
            ],
        }
