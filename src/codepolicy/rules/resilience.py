"""Async, timeout, retry and exception-handling rules."""

# codepolicy:domain=rules

from __future__ import annotations

from typing import TYPE_CHECKING

from codepolicy.metrics import patterns as pt
from codepolicy.rules.base import Severity, rule

if TYPE_CHECKING:
    from collections.abc import Iterator

    from codepolicy.rules.base import Finding, RuleContext


@rule(
    "blocking-call-in-async",
    category="async",
    scope="callable",
    severity=Severity.ERROR,
    description="Async callable calls a blocking API and stalls the event loop",
)
def blocking_call_in_async(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    if ctx.metrics.is_async and ctx.metrics.blocking_calls:
        calls = ctx.metrics.blocking_calls
        yield ctx.finding(
            f"async {ctx.metrics.qualname} calls blocking {', '.join(calls)}",
            evidence=[("blocking_calls", calls)],
        )


@rule(
    "missing-timeout",
    category="error-handling",
    scope="callable",
    severity=Severity.WARNING,
    description="Network call or client construction without a timeout",
)
def missing_timeout(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    m = ctx.metrics
    targets = tuple(sorted({*m.network_calls, *m.client_constructions}))
    if targets and not m.has_timeout:
        yield ctx.finding(
            f"{m.qualname} calls {', '.join(targets)} without a timeout",
            evidence=[("calls", targets)],
        )


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


@rule(
    "retry-without-backoff",
    category="error-handling",
    scope="callable",
    severity=Severity.WARNING,
    description="Retry without exponential backoff hammers a struggling dependency",
)
def retry_without_backoff(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    m = ctx.metrics
    if m.has_retry and not m.has_backoff:
        yield ctx.finding(
            f"{m.qualname} retries ({m.retry_style}) without backoff",
            evidence=[("retry_style", m.retry_style)],
        )


@rule(
    "unbounded-retry",
    category="error-handling",
    scope="callable",
    severity=Severity.ERROR,
    description="Retry has no attempt cap",
)
def unbounded_retry(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    m = ctx.metrics
    if m.has_retry and m.retry_attempt_cap is None:
        yield ctx.finding(
            f"{m.qualname} retries ({m.retry_style}) with no attempt cap",
            evidence=[("retry_style", m.retry_style)],
        )


@rule(
    "retry-non-idempotent",
    category="error-handling",
    scope="callable",
    severity=Severity.ERROR,
    description="Retry around a POST/PATCH call without an idempotency key",
    toggles={"identifier_marker": True, "header_marker": True},
)
def retry_non_idempotent(ctx: RuleContext) -> Iterator[Finding]:
    """Mutating calls may only be retried when an idempotency key is sent.

    ``identifier_marker`` accepts an ``idempotency_key``-style identifier as the
    marker; ``header_marker`` accepts an ``Idempotency-Key`` header literal.
    """
    assert ctx.metrics is not None
    m = ctx.metrics
    if not (m.has_retry and m.mutating_calls):
        return
    marked = (ctx.rule.toggle("identifier_marker") and m.idempotency_identifier) or (
        ctx.rule.toggle("header_marker") and m.idempotency_header
    )
    if marked:
        return
    yield ctx.finding(
        f"{m.qualname} retries non-idempotent {', '.join(m.mutating_calls)} "
        "without an idempotency key",
        evidence=[("mutating_calls", m.mutating_calls), ("retry_style", m.retry_style)],
    )


@rule(
    "retry-non-transient-status",
    category="error-handling",
    scope="callable",
    severity=Severity.ERROR,
    description="Retry triggers on a status code that will not succeed on retry",
)
def retry_non_transient_status(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.metrics is not None
    m = ctx.metrics
    if not m.has_retry:
        return
    bad = tuple(code for code in m.retry_statuses if pt.is_non_transient(code))
    if bad:
        yield ctx.finding(
            f"{m.qualname} retries on non-transient status {', '.join(map(str, bad))}",
            evidence=[("non_transient", bad), ("statuses", m.retry_statuses)],
        )


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


@rule(
    "swallowed-exception",
    category="error-handling",
    scope="callable",
    severity=Severity.WARNING,
    description="Exception caught and silently discarded",
    toggles={"logged_counts_as_swallowed": False},
)
def swallowed_exception(ctx: RuleContext) -> Iterator[Finding]:
    assert ctx.symbol is not None
    actions = {"swallow"}
    if ctx.rule.toggle("logged_counts_as_swallowed"):
        actions.add("log")
    for handler in ctx.symbol.handlers:
        if handler.action not in actions:
            continue
        caught = ", ".join(handler.caught) or "everything"
        yield ctx.finding(
            f"{ctx.symbol.qualname} catches {caught} and discards it",
            line=handler.line,
            evidence=[("action", handler.action), ("caught", handler.caught)],
        )
