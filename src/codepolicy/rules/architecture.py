"""Structural rules: file and callable size, mixed concerns, naming, testability."""

# codepolicy:domain=rules

from __future__ import annotations

from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from codepolicy.metrics import patterns as pt
from codepolicy.metrics.extractor import is_mixed_concern
from codepolicy.rules.base import Severity, rule

if TYPE_CHECKING:
    from collections.abc import Iterator

    from codepolicy.rules.base import Finding, RuleContext


# ---------------------------------------------------------------------------
# Unit scope
# ---------------------------------------------------------------------------


@rule(
    "file-size",
    category="architecture",
    scope="unit",
    severity=Severity.WARNING,
    description="Source file exceeds the line cap and should be split",
    thresholds={"max_lines": 500, "recheck_lines": 1000},
    toggles={"uniform_exemption": True, "recheck_prompt": True},
)
def file_size(ctx: RuleContext) -> Iterator[Finding]:
    """Warn above ``max_lines`` unless every callable shares one category.

    Uniform files (e.g. only data-shape declarations) are exempt from the
    warning but still get an info re-check prompt above ``recheck_lines``.
    """
    assert ctx.file is not None
    um = ctx.file.unit_metrics
    lines = um.code_line_count
    max_lines = ctx.rule.threshold("max_lines")
    exempt = um.uniform and ctx.rule.toggle("uniform_exemption")
    if lines > max_lines and not exempt:
        yield ctx.finding(
            f"{lines} code lines exceeds {max_lines}; split by concern",
            evidence=[("code_lines", lines), ("max_lines", max_lines)],
        )

    recheck = ctx.rule.threshold("recheck_lines")
    if ctx.rule.toggle("recheck_prompt") and lines > recheck:
        yield ctx.finding(
            f"{lines} code lines exceeds {recheck}; re-check whether this file should stay whole",
            severity=Severity.INFO,
            evidence=[("code_lines", lines), ("recheck_lines", recheck)],
        )


@rule(
    "mixed-concern",
    category="architecture",
    scope="unit",
    severity=Severity.ERROR,
    description="File mixes network/I-O callables with unrelated logic",
    thresholds={"min_io_callables": 2, "same_domain_allowance": 2},
)
def mixed_concern(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.file is not None
    um = ctx.file.unit_metrics
    allowance = int(ctx.rule.threshold("same_domain_allowance"))
    if not is_mixed_concern(um, allowance):
        return
    if um.io_callable_count < ctx.rule.threshold("min_io_callables"):
        return
    io_names = tuple(cm.qualname for cm in ctx.file.callables if cm.is_io)
    yield ctx.finding(
        f"{um.io_callable_count} I/O callables ({', '.join(io_names)}) share a file with "
        f"{um.pure_callable_count} other callables; move I/O behind its own module",
        evidence=[
            ("io_callables", io_names),
            ("other_callables", um.pure_callable_count),
        ],
    )


@rule(
    "vague-module-name",
    category="naming",
    scope="unit",
    severity=Severity.INFO,
    description="Module name is a dumping ground (utils, helpers, misc)",
)
def vague_module_name(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.file is not None
    stem = PurePosixPath(ctx.file.unit.path).stem
    if stem.lower() in pt.VAGUE_MODULE_NAMES:
        yield ctx.finding(
            f"module name '{stem}' says nothing about its contents; name it after what it does",
            evidence=[("module", stem)],
        )


# ---------------------------------------------------------------------------
# Callable scope
# ---------------------------------------------------------------------------


@rule(
    "callable-length",
    category="architecture",
    scope="callable",
    severity=Severity.WARNING,
    description="Function or method body is too long",
    thresholds={"max_lines": 50},
)
def callable_length(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    limit = ctx.rule.threshold("max_lines")
    if ctx.metrics.body_lines > limit:
        yield ctx.finding(
            f"{ctx.metrics.qualname} spans {ctx.metrics.body_lines} lines (max {limit})",
            evidence=[("body_lines", ctx.metrics.body_lines), ("max_lines", limit)],
        )


@rule(
    "param-count",
    category="architecture",
    scope="callable",
    severity=Severity.WARNING,
    description="Too many parameters; group them into a parameter object",
    thresholds={"max_params": 4},
)
def param_count(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    limit = ctx.rule.threshold("max_params")
    if ctx.metrics.param_count > limit:
        yield ctx.finding(
            f"{ctx.metrics.qualname} takes {ctx.metrics.param_count} parameters (max {limit})",
            evidence=[("max_params", limit), ("param_count", ctx.metrics.param_count)],
        )


@rule(
    "nesting-depth",
    category="architecture",
    scope="callable",
    severity=Severity.WARNING,
    description="Blocks nested too deeply; extract or return early",
    thresholds={"max_depth": 3},
)
def nesting_depth(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    limit = ctx.rule.threshold("max_depth")
    if ctx.metrics.max_nesting > limit:
        yield ctx.finding(
            f"{ctx.metrics.qualname} nests blocks {ctx.metrics.max_nesting} deep (max {limit})",
            evidence=[("max_depth", limit), ("max_nesting", ctx.metrics.max_nesting)],
        )


@rule(
    "generic-callable-name",
    category="naming",
    scope="callable",
    severity=Severity.INFO,
    description="Top-level function has a name that does not say what it does",
    kinds=("function",),
)
def generic_callable_name(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.symbol is not None
    name = ctx.symbol.name
    if name.lower() in pt.GENERIC_CALLABLE_NAMES:
        yield ctx.finding(
            f"function name '{name}' is too generic; name the action and its object",
            evidence=[("name", name)],
        )


@rule(
    "io-in-constructor",
    category="testability",
    scope="callable",
    severity=Severity.WARNING,
    description="Constructor performs I/O; inject the dependency instead",
    kinds=("method",),
)
def io_in_constructor(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.symbol is not None and ctx.metrics is not None
    if ctx.symbol.name != "__init__" or not ctx.metrics.io_calls:
        return
    yield ctx.finding(
        f"{ctx.metrics.qualname} performs I/O ({', '.join(ctx.metrics.io_calls)})",
        evidence=[("io_calls", ctx.metrics.io_calls)],
    )
