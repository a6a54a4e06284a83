"""Finding Aggregator: dedupe, sort, group and judge findings."""

# codepolicy:domain=engine

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codepolicy.rules.base import Severity

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from codepolicy.rules.base import Finding

# Process exit codes.
EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2
EXIT_TIMEOUT = 3


def _group(
    findings: Iterable[Finding], key: Callable[[Finding], str]
) -> dict[str, tuple[Finding, ...]]:
    groups: dict[str, list[Finding]] = defaultdict(list)
    for finding in findings:
        groups[key(finding)].append(finding)
    return {name: tuple(items) for name, items in sorted(groups.items())}


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan. ``findings`` are deduplicated and sorted."""

    findings: tuple[Finding, ...] = ()
    files_analyzed: int = 0
    files_failed: int = 0
    rules_evaluated: int = 0
    complete: bool = True
    root: str = ""
    ruleset: str = "default"
    elapsed_ms: float = field(default=0.0, compare=False)

    # -- views ---------------------------------------------------------------

    @property
    def violations(self) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if not f.is_scan_error)

    @property
    def scan_errors(self) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.is_scan_error)

    def severity_counts(self) -> dict[str, int]:
        counts = {s.label: 0 for s in Severity}
        for finding in self.findings:
            counts[finding.severity.label] += 1
        return counts

    def by_path(self) -> dict[str, tuple[Finding, ...]]:
        return _group(self.findings, lambda f: f.path)

    def by_rule(self) -> dict[str, tuple[Finding, ...]]:
        return _group(self.findings, lambda f: f.rule_id)

    def by_severity(self) -> dict[str, tuple[Finding, ...]]:
        return _group(self.findings, lambda f: f.severity.label)

    def by_category(self) -> dict[str, tuple[Finding, ...]]:
        return _group(self.findings, lambda f: f.category)

    # -- verdict -------------------------------------------------------------

    def at_or_above(self, threshold: Severity) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.severity >= threshold)

    def passes(self, threshold: Severity) -> bool:
        """True when no finding meets or exceeds *threshold*."""
        return not self.at_or_above(threshold)

    def exit_code(self, threshold: Severity) -> int:
        """0 clean, 1 findings at or above *threshold*, 3 clean but incomplete."""
        if not self.passes(threshold):
            return EXIT_FINDINGS
        if not self.complete:
            return EXIT_TIMEOUT
        return EXIT_OK

    def summary(self) -> str:
        text = (
            f"{len(self.violations)} rule violations, "
            f"{self.files_failed} files could not be analyzed "
            f"({self.files_analyzed} analyzed, {self.rules_evaluated} rules)"
        )
        if not self.complete:
            text += "; scan timed out, results are partial"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "summary": {
                "root": self.root,
                "ruleset": self.ruleset,
                "files_analyzed": self.files_analyzed,
                "files_failed": self.files_failed,
                "rules_evaluated": self.rules_evaluated,
                "violations": len(self.violations),
                "scan_errors": len(self.scan_errors),
                "severity_counts": self.severity_counts(),
                "complete": self.complete,
                "elapsed_ms": round(self.elapsed_ms, 1),
            },
        }


def aggregate(
    findings: Iterable[Finding],
    *,
    files_analyzed: int,
    files_failed: int,
    rules_evaluated: int,
    complete: bool = True,
    root: str = "",
    ruleset: str = "default",
    elapsed_ms: float = 0.0,
) -> ScanResult:
    """Deduplicate and sort *findings* into a ScanResult.

    Of several equal findings the most severe one is kept.
    """
    ordered = sorted(findings, key=lambda f: (f.sort_key(), -int(f.severity)))
    unique = tuple(dict.fromkeys(ordered))
    return ScanResult(
        findings=unique,
        files_analyzed=files_analyzed,
        files_failed=files_failed,
        rules_evaluated=rules_evaluated,
        complete=complete,
        root=root,
        ruleset=ruleset,
        elapsed_ms=elapsed_ms,
    )
