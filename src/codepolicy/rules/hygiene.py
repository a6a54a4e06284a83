"""Security and logging hygiene rules."""

# codepolicy:domain=rules

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from codepolicy.metrics import patterns as pt
from codepolicy.rules.base import Severity, rule

if TYPE_CHECKING:
    from collections.abc import Iterator

    from codepolicy.rules.base import Finding, RuleContext
    from codepolicy.symbols.model import LiteralToken

_STRING_LITERAL_RE = re.compile(r"""([rRbBuUfF]{0,2})("|')((?:\\.|(?!\2).)*)\2""")
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_FIELD_RE = re.compile(r"\{([^{}]+)\}")
_FSTRING_RE = re.compile(r"^[rRbBuU]?[fF][rR]?[\"']")


def _referenced_identifiers(text: str) -> set[str]:
    """Identifiers an argument expression reads, ignoring plain string contents."""
    names: set[str] = set()
    for prefix, _, body in _STRING_LITERAL_RE.findall(text):
        if "f" in prefix.lower():
            for expr in _FIELD_RE.findall(body):
                names.update(_IDENTIFIER_RE.findall(expr.split("!")[0].split(":")[0]))
    names.update(_IDENTIFIER_RE.findall(_STRING_LITERAL_RE.sub(" ", text)))
    return names


def _is_script(path: str) -> bool:
    pure = PurePosixPath(path)
    stem = pure.stem
    if stem in pt.ENTRYPOINT_STEMS or stem.startswith("test_") or stem.endswith("_test"):
        return True
    return any(part in pt.SCRIPT_DIRS for part in pure.parts[:-1])


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


def _secret_candidate(token: LiteralToken, min_length: int | float, min_entropy: float) -> bool:
    if token.kind != "string" or token.formatted or token.target is None:
        return False
    name = pt.last_segment(token.target).strip("'\"")
    if not pt.SECRET_NAME_RE.search(name):
        return False
    value = token.value
    if len(value) < min_length or not pt.looks_opaque(value):
        return False
    return pt.shannon_entropy(value) >= min_entropy


@rule(
    "secret-literal",
    category="security",
    scope="unit",
    severity=Severity.ERROR,
    description="Credential-shaped literal hard-coded in source",
    thresholds={"min_length": 20, "min_entropy": 3.0},
)
def secret_literal(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.file is not None
    min_length = ctx.rule.threshold("min_length")
    min_entropy = float(ctx.rule.threshold("min_entropy"))
    unit = ctx.file.unit

    scoped: list[tuple[str | None, LiteralToken]] = [(None, t) for t in unit.literals]
    for item in unit.callables:
        scoped.extend((item.qualname, t) for t in item.literals)

    for qualname, token in scoped:
        if not _secret_candidate(token, min_length, min_entropy):
            continue
        # The value itself stays out of the report.
        yield ctx.finding(
            f"'{token.target}' is assigned a {len(token.value)}-character opaque literal; "
            "load it from the environment or a secret store",
            line=token.line,
            callable=qualname,
            evidence=[
                ("entropy", round(pt.shannon_entropy(token.value), 2)),
                ("length", len(token.value)),
                ("target", token.target),
            ],
        )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@rule(
    "sensitive-log-content",
    category="logging",
    scope="callable",
    severity=Severity.ERROR,
    description="Logging call includes a credential or PII parameter",
)
def sensitive_log_content(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.symbol is not None and ctx.metrics is not None
    sensitive = {p for p in ctx.symbol.params if pt.SENSITIVE_NAME_RE.search(p)}
    if not sensitive:
        return
    for call in ctx.metrics.log_calls:
        texts = [*call.args, *(value for _, value in call.keywords)]
        leaked: set[str] = set()
        for text in texts:
            leaked |= _referenced_identifiers(text) & sensitive
        if leaked:
            names = tuple(sorted(leaked))
            yield ctx.finding(
                f"{call.target} logs sensitive parameter {', '.join(names)}",
                line=call.line,
                evidence=[("parameters", names)],
            )


@rule(
    "unstructured-log-message",
    category="logging",
    scope="callable",
    severity=Severity.INFO,
    description="Log message is pre-formatted instead of passing arguments",
)
def unstructured_log_message(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    for call in ctx.metrics.log_calls:
        if not call.args:
            continue
        message = call.args[1] if call.method == "log" and len(call.args) > 1 else call.args[0]
        style = None
        if _FSTRING_RE.match(message):
            style = "f-string"
        else:
            bare = _STRING_LITERAL_RE.sub('""', message)
            if ".format(" in bare:
                style = "format"
            elif "%" in bare:
                style = "percent"
            elif "+" in bare:
                style = "concatenation"
        if style is not None:
            yield ctx.finding(
                f"{call.target} builds its message with {style}; pass values as arguments",
                line=call.line,
                evidence=[("style", style)],
            )


@rule(
    "print-statement",
    category="logging",
    scope="callable",
    severity=Severity.INFO,
    description="print() in library code; use a logger",
)
def print_statement(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.file is not None and ctx.symbol is not None
    if _is_script(ctx.file.unit.path) or ctx.symbol.name == "main":
        return
    prints = [call for call in ctx.symbol.calls if call.target == "print"]
    if prints:
        yield ctx.finding(
            f"{ctx.symbol.qualname} uses print(); use a module logger",
            line=prints[0].line,
            evidence=[("count", len(prints))],
        )
