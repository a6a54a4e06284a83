"""Repository-wide rules evaluated against the Cross-File Index."""

# codepolicy:domain=rules

from __future__ import annotations

from typing import TYPE_CHECKING

from codepolicy.metrics import patterns as pt
from codepolicy.rules.base import Severity, rule

if TYPE_CHECKING:
    from collections.abc import Iterator

    from codepolicy.rules.base import Finding, RuleContext


@rule(
    "duplicate-retry-helper",
    category="error-handling",
    scope="index",
    severity=Severity.WARNING,
    description="Several files implement retry/backoff independently instead of sharing one",
    thresholds={"min_units": 2},
    toggles={"count_library_retries": False},
)
def duplicate_retry_helper(ctx: RuleContext) -> Iterator[Finding]:
    """Report every independent retry implementation in a single Finding."""
    assert ctx.index is not None
    include_library = ctx.rule.toggle("count_library_retries")
    first_per_unit: dict[str, int] = {}
    for impl in ctx.index.retry_implementations:
        if impl.style != "loop" and not include_library:
            continue
        if impl.path not in first_per_unit or impl.line < first_per_unit[impl.path]:
            first_per_unit[impl.path] = impl.line

    if len(first_per_unit) < ctx.rule.threshold("min_units"):
        return
    paths = tuple(sorted(first_per_unit))
    yield ctx.finding(
        f"{len(paths)} files implement retry/backoff independently "
        f"({', '.join(paths)}); extract one shared helper",
        path=paths[0],
        line=first_per_unit[paths[0]],
        related=[(path, first_per_unit[path]) for path in paths],
        evidence=[("files", paths)],
    )


@rule(
    "duplicate-definition",
    category="architecture",
    scope="index",
    severity=Severity.WARNING,
    description="Same top-level function defined in several files",
    thresholds={"min_files": 3},
)
def duplicate_definition(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.index is not None
    limit = ctx.rule.threshold("min_files")
    for name, definitions in ctx.index.definitions.items():
        paths = sorted({d.path for d in definitions})
        if len(paths) < limit:
            continue
        first = min(definitions, key=lambda d: (d.path, d.line))
        yield ctx.finding(
            f"'{name}' is defined in {len(paths)} files; keep one shared definition",
            path=first.path,
            line=first.line,
            callable=name,
            related=[(d.path, d.line) for d in definitions],
            evidence=[("files", len(paths)), ("name", name)],
        )


@rule(
    "shared-helper-location",
    category="architecture",
    scope="index",
    severity=Severity.INFO,
    description="Helper used across domains lives inside one domain module",
    thresholds={"min_fan_in": 3},
)
def shared_helper_location(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.index is not None
    limit = ctx.rule.threshold("min_fan_in")
    for name, users in ctx.index.identifier_users.items():
        if len(users) < limit:
            continue
        definitions = ctx.index.definitions.get(name, ())
        if len(definitions) != 1:
            continue
        home = definitions[0]
        if home.domain in pt.SHARED_DOMAINS:
            continue
        foreign = sorted({ctx.index.domains[u] for u in users} - {home.domain})
        if not foreign:
            continue
        yield ctx.finding(
            f"'{name}' is used by {len(users)} files across domains "
            f"({', '.join(foreign)}) but lives in '{home.domain}'; move it to a shared module",
            path=home.path,
            line=home.line,
            callable=name,
            related=[(u, 1) for u in users],
            evidence=[("fan_in", len(users)), ("name", name)],
        )


@rule(
    "directory-depth",
    category="architecture",
    scope="index",
    severity=Severity.INFO,
    description="Directory nested deeper than the layout allows",
    thresholds={"max_depth": 3},
)
def directory_depth(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.index is not None
    limit = ctx.rule.threshold("max_depth")
    for stats in ctx.index.directories:
        if stats.depth > limit:
            yield ctx.finding(
                f"{stats.directory} is {stats.depth} levels deep (max {limit}); flatten the layout",
                path=stats.directory,
                line=0,
                evidence=[("depth", stats.depth), ("max_depth", limit)],
            )


@rule(
    "directory-size",
    category="architecture",
    scope="index",
    severity=Severity.INFO,
    description="Directory holds too many source files",
    thresholds={"max_files": 20},
)
def directory_size(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.index is not None
    limit = ctx.rule.threshold("max_files")
    for stats in ctx.index.directories:
        if stats.file_count > limit:
            yield ctx.finding(
                f"{stats.directory} holds {stats.file_count} source files (max {limit}); "
                "group them into sub-packages",
                path=stats.directory,
                line=0,
                evidence=[("file_count", stats.file_count), ("max_files", limit)],
            )
