"""Evaluator: discover files, run per-file rules in parallel, then index rules.

The per-file pipeline (read, parse or cache hit, metrics, callable and unit
rules) runs on a thread pool. ``concurrent.futures.wait`` is the barrier:
the Cross-File Index is built only after every per-file future is done, and
index-scope rules only ever see the complete index.
"""

# codepolicy:domain=engine

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from codepolicy.engine.aggregator import ScanResult, aggregate
from codepolicy.errors import CodePolicyError, ParseFailure, TimeoutExceeded
from codepolicy.index.cross_file import build_index
from codepolicy.metrics.extractor import extract_metrics
from codepolicy.rules.base import SCAN_ERROR_RULE_ID, Finding, RuleContext, Severity
from codepolicy.rules.ruleset import RuleSet, ScanSettings, default_ruleset
from codepolicy.symbols.registry import detect_language, parse_source, supported_extensions

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from codepolicy.engine.cache import UnitCache
    from codepolicy.metrics.extractor import FileMetrics
    from codepolicy.rules.base import Rule
    from codepolicy.symbols.model import SourceUnit

    Parser = Callable[[str, bytes, str], SourceUnit]

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = min(os.cpu_count() or 4, 8)

# Directories never scanned.
SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules",
    "__pycache__",
    "venv",
    ".venv",
    "env",
    "dist",
    "build",
    "site-packages",
    ".git",
    ".hg",
    ".tox",
    ".nox",
    ".eggs",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".codepolicy",
})


@dataclass(frozen=True)
class FileOutcome:
    """Everything one per-file pipeline produced."""

    path: str
    metrics: FileMetrics | None
    findings: tuple[Finding, ...] = ()

    @property
    def failed(self) -> bool:
        return self.metrics is None


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _excluded(rel: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(rel, pattern) for pattern in patterns)


def discover_files(root: Path, exclude: Iterable[str] = ()) -> list[Path]:
    """Return the sorted source files under *root* that have an adapter."""
    patterns = tuple(exclude)
    if root.is_file():
        return [root] if detect_language(root) is not None else []

    extensions = supported_extensions()
    found: list[Path] = []
    for path in sorted(root.rglob("*")):
        rel_parts = path.relative_to(root).parts
        if any(part in SKIP_DIRS for part in rel_parts[:-1]):
            continue
        if not path.is_file():
            continue
        if path.suffix not in extensions:
            logger.debug("Skipping %s: no adapter for '%s'", path, path.suffix)
            continue
        rel = Path(*rel_parts).as_posix()
        if _excluded(rel, patterns):
            logger.debug("Skipping %s: excluded", rel)
            continue
        found.append(path)
    return found


# ---------------------------------------------------------------------------
# Per-file pipeline
# ---------------------------------------------------------------------------


def _scan_error(
    rule: Rule | None,
    path: str,
    message: str,
    *,
    line: int = 1,
    reason: str,
    callable_name: str | None = None,
) -> Finding:
    return Finding(
        rule_id=SCAN_ERROR_RULE_ID,
        path=path,
        line=line,
        callable=callable_name,
        evidence=(("reason", reason),),
        severity=rule.severity if rule is not None else Severity.WARNING,
        category="scan-error",
        message=message,
    )


def _run_rule(ctx: RuleContext, scan_rule: Rule | None, path: str) -> list[Finding]:
    """Run one check; a crash becomes a scan-error finding instead of propagating."""
    try:
        return list(ctx.rule.check(ctx))
    except Exception as exc:
        logger.debug("Rule %s crashed on %s", ctx.rule.id, path, exc_info=True)
        where = f" in {ctx.symbol.qualname}" if ctx.symbol is not None else ""
        return [
            _scan_error(
                scan_rule,
                path,
                f"rule '{ctx.rule.id}' failed{where}: {exc}",
                line=ctx.symbol.line_start if ctx.symbol is not None else 1,
                reason=f"rule-crash:{ctx.rule.id}",
                callable_name=ctx.symbol.qualname if ctx.symbol is not None else None,
            )
        ]


def evaluate_file(fm: FileMetrics, ruleset: RuleSet) -> list[Finding]:
    """Run every enabled unit- and callable-scope rule over one file."""
    scan_rule = ruleset.get(SCAN_ERROR_RULE_ID)
    path = fm.unit.path
    findings: list[Finding] = []
    for unit_rule in ruleset.enabled("unit"):
        findings.extend(_run_rule(RuleContext(rule=unit_rule, file=fm), scan_rule, path))

    callable_rules = ruleset.enabled("callable")
    for item, cm in zip(fm.unit.callables, fm.callables):
        for callable_rule in callable_rules:
            if item.kind not in callable_rule.kinds:
                continue
            ctx = RuleContext(rule=callable_rule, file=fm, symbol=item, metrics=cm)
            findings.extend(_run_rule(ctx, scan_rule, path))
    return findings


def analyze_file(
    path: Path,
    base: Path,
    ruleset: RuleSet,
    *,
    cache: UnitCache | None = None,
    parser: Parser = parse_source,
) -> FileOutcome:
    """Per-file pipeline. Never raises: failures become scan-error findings."""
    display = path.relative_to(base).as_posix()
    scan_rule = ruleset.get(SCAN_ERROR_RULE_ID)
    try:
        language = detect_language(path) or path.suffix
        try:
            content = path.read_bytes()
        except OSError as exc:
            msg = f"cannot read file ({exc.strerror or exc})"
            raise ParseFailure(display, msg) from exc

        content_hash = hashlib.sha256(content).hexdigest()
        unit = cache.get(display, content_hash) if cache is not None else None
        if unit is None:
            unit = parser(display, content, language)
            if cache is not None:
                cache.put(unit)
        fm = extract_metrics(unit)
    except ParseFailure as exc:
        logger.info("Cannot analyze %s: %s", display, exc)
        finding = _scan_error(scan_rule, display, str(exc), line=exc.line, reason="parse-failure")
        return FileOutcome(path=display, metrics=None, findings=(finding,))
    except CodePolicyError as exc:
        logger.info("Cannot analyze %s: %s", display, exc)
        finding = _scan_error(scan_rule, display, str(exc), reason=type(exc).__name__)
        return FileOutcome(path=display, metrics=None, findings=(finding,))
    except Exception as exc:
        logger.warning("Unexpected error analyzing %s: %s", display, exc, exc_info=True)
        finding = _scan_error(
            scan_rule, display, f"internal error: {exc}", reason="internal-error"
        )
        return FileOutcome(path=display, metrics=None, findings=(finding,))

    return FileOutcome(path=display, metrics=fm, findings=tuple(evaluate_file(fm, ruleset)))


# ---------------------------------------------------------------------------
# Index phase
# ---------------------------------------------------------------------------


def evaluate_index(files: Iterable[FileMetrics], ruleset: RuleSet) -> list[Finding]:
    """Build the Cross-File Index and run every enabled index-scope rule."""
    file_metrics = tuple(sorted(files, key=lambda fm: fm.unit.path))
    index_rules = ruleset.enabled("index")
    if not index_rules:
        return []
    index = build_index(file_metrics)
    scan_rule = ruleset.get(SCAN_ERROR_RULE_ID)
    findings: list[Finding] = []
    for index_rule in index_rules:
        ctx = RuleContext(rule=index_rule, index=index, files=file_metrics)
        findings.extend(_run_rule(ctx, scan_rule, "."))
    return findings


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def scan(
    root: Path,
    ruleset: RuleSet | None = None,
    settings: ScanSettings | None = None,
    *,
    cache: UnitCache | None = None,
    parser: Parser = parse_source,
    raise_on_timeout: bool = False,
) -> ScanResult:
    """Scan *root* (a directory or a single file) and return the ScanResult.

    Per-file failures never cancel sibling work. On timeout, pending files are
    cancelled, collected findings are kept, index rules are skipped and the
    result is flagged incomplete; :class:`TimeoutExceeded` is raised with the
    partial result only when *raise_on_timeout* is set.
    """
    start = time.monotonic()
    ruleset = ruleset or default_ruleset()
    settings = settings or ruleset.settings
    root = root.resolve()
    base = root.parent if root.is_file() else root

    files = discover_files(root, settings.exclude)
    workers = settings.workers or DEFAULT_WORKERS
    logger.info("Scanning %d files under %s with %d workers", len(files), root, workers)

    outcomes: list[FileOutcome] = []
    complete = True
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [
            executor.submit(analyze_file, path, base, ruleset, cache=cache, parser=parser)
            for path in files
        ]
        done, pending = wait(futures, timeout=settings.timeout)
        if pending:
            complete = False
            for future in pending:
                future.cancel()
            logger.warning(
                "Scan timed out after %ss: %d of %d files finished",
                settings.timeout,
                len(done),
                len(files),
            )
        outcomes = [future.result() for future in done]
    finally:
        executor.shutdown(wait=complete, cancel_futures=True)

    outcomes.sort(key=lambda o: o.path)
    findings: list[Finding] = [f for o in outcomes for f in o.findings]
    analyzed = [o.metrics for o in outcomes if o.metrics is not None]

    if complete:
        findings.extend(evaluate_index(analyzed, ruleset))
    else:
        logger.warning("Skipping repository-wide rules: not every file was analyzed")

    result = aggregate(
        findings,
        files_analyzed=len(analyzed),
        files_failed=sum(1 for o in outcomes if o.failed),
        rules_evaluated=sum(1 for r in ruleset.enabled() if r.scope != "engine"),
        complete=complete,
        root=root.as_posix(),
        ruleset=ruleset.name,
        elapsed_ms=(time.monotonic() - start) * 1000,
    )
    logger.info("Scan finished: %s", result.summary())

    if not complete and raise_on_timeout:
        raise TimeoutExceeded(settings.timeout or 0.0, result)
    return result


def scan_units(units: Iterable[SourceUnit], ruleset: RuleSet | None = None) -> ScanResult:
    """Evaluate already-built SourceUnits (no discovery, no parsing)."""
    start = time.monotonic()
    ruleset = ruleset or default_ruleset()
    file_metrics = [extract_metrics(unit) for unit in sorted(units, key=lambda u: u.path)]
    findings: list[Finding] = []
    for fm in file_metrics:
        findings.extend(evaluate_file(fm, ruleset))
    findings.extend(evaluate_index(file_metrics, ruleset))
    return aggregate(
        findings,
        files_analyzed=len(file_metrics),
        files_failed=0,
        rules_evaluated=sum(1 for r in ruleset.enabled() if r.scope != "engine"),
        ruleset=ruleset.name,
        elapsed_ms=(time.monotonic() - start) * 1000,
    )
