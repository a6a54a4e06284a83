"""Metric Extractor: pure, deterministic metrics computed from a SourceUnit."""

# codepolicy:domain=metrics

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from codepolicy.metrics import patterns as pt

if TYPE_CHECKING:
    from codepolicy.symbols.model import (
        Callable,
        CallSite,
        LiteralToken,
        LoopMarker,
        SourceUnit,
    )

_RECEIVERS = frozenset({"self", "cls"})

# Methods treated as construction sites for the attributes their class uses.
_CONSTRUCTION_METHODS = ("__init__", "__post_init__", "__enter__", "__aenter__")


@dataclass(frozen=True)
class CallableMetrics:
    """Metrics for one Callable. Call lists hold resolved targets, sorted."""

    qualname: str
    kind: str
    line: int
    param_count: int
    body_lines: int
    max_nesting: int
    is_async: bool
    category: str  # "data-shape" | "io" | "logic"
    io_calls: tuple[str, ...] = ()
    network_calls: tuple[str, ...] = ()
    mutating_calls: tuple[str, ...] = ()
    blocking_calls: tuple[str, ...] = ()
    client_constructions: tuple[str, ...] = ()
    has_retry: bool = False
    retry_style: str | None = None  # "loop" | "decorator" | "client"
    has_backoff: bool = False
    has_timeout: bool = False
    retry_attempt_cap: int | None = None
    retry_statuses: tuple[int, ...] = ()
    idempotency_identifier: bool = False
    idempotency_header: bool = False
    log_calls: tuple[CallSite, ...] = ()

    @property
    def has_idempotency_key(self) -> bool:
        return self.idempotency_identifier or self.idempotency_header

    @property
    def is_io(self) -> bool:
        return self.category == "io"

    def as_evidence(self, *names: str) -> tuple[tuple[str, Any], ...]:
        """Return selected metrics (all scalar ones by default) as sorted pairs."""
        return _evidence(self, names)


@dataclass(frozen=True)
class UnitMetrics:
    """Metrics for one SourceUnit."""

    path: str
    module: str
    domain: str
    directory: str
    directory_depth: int
    line_count: int
    code_line_count: int
    callable_count: int
    io_callable_count: int
    pure_callable_count: int
    categories: tuple[str, ...]
    uniform: bool
    implements_retry: bool
    retry_styles: tuple[str, ...] = ()

    def as_evidence(self, *names: str) -> tuple[tuple[str, Any], ...]:
        return _evidence(self, names)


@dataclass(frozen=True)
class FileMetrics:
    """A SourceUnit together with its unit and per-callable metrics."""

    unit: SourceUnit
    unit_metrics: UnitMetrics
    callables: tuple[CallableMetrics, ...] = ()

    def for_callable(self, qualname: str) -> CallableMetrics | None:
        for item in self.callables:
            if item.qualname == qualname:
                return item
        return None


def _evidence(obj: Any, names: tuple[str, ...]) -> tuple[tuple[str, Any], ...]:
    wanted = names or tuple(
        f.name
        for f in fields(obj)
        if isinstance(getattr(obj, f.name), (int, str, bool, type(None)))
    )
    return tuple(sorted((name, getattr(obj, name)) for name in wanted))


def is_mixed_concern(metrics: UnitMetrics, allowance: int) -> bool:
    """True if *metrics* mixes I/O and non-I/O callables beyond *allowance*.

    A unit with no more callables than *allowance* is a thin wrapper and is
    never mixed.
    """
    if metrics.callable_count <= allowance:
        return False
    return metrics.io_callable_count >= 1 and metrics.pure_callable_count >= 1


# ---------------------------------------------------------------------------
# Alias resolution
# ---------------------------------------------------------------------------


def import_aliases(unit: SourceUnit) -> dict[str, str]:
    """Map local names bound by imports to their fully qualified targets."""
    aliases: dict[str, str] = {}
    for edge in unit.imports:
        if edge.names and edge.names != ("*",):
            imported = edge.names[0]
            local = edge.alias or imported
            aliases[local] = f"{edge.target}.{imported}" if edge.target else imported
        elif not edge.names and edge.alias:
            aliases[edge.alias] = edge.target
    return aliases


def resolve_target(target: str, aliases: dict[str, str]) -> str:
    head, sep, rest = target.partition(".")
    if head in aliases:
        return aliases[head] + sep + rest
    return target


# ---------------------------------------------------------------------------
# Call classification
# ---------------------------------------------------------------------------


def _is_client_receiver(call: CallSite) -> bool:
    receiver = call.receiver
    return bool(receiver) and bool(pt.CLIENT_RECEIVER_RE.search(pt.last_segment(receiver)))


def _is_construction(resolved: str) -> bool:
    return resolved in pt.CLIENT_CONSTRUCTORS


def _is_network(resolved: str, call: CallSite) -> bool:
    if _is_construction(resolved):
        return False
    if pt.matches_module(resolved, pt.NETWORK_MODULES):
        # Exception classes and other constructors are not requests.
        return pt.last_segment(resolved)[:1].islower()
    return call.method in pt.HTTP_METHODS and _is_client_receiver(call)


def _is_local_io(resolved: str, call: CallSite) -> bool:
    if resolved in pt.FILE_IO_CALLS or resolved.startswith(pt.IO_MODULE_PREFIXES):
        return True
    if call.receiver and call.method in pt.FILE_IO_METHODS:
        return True
    return (
        bool(call.receiver)
        and call.method in pt.DB_METHODS
        and bool(pt.DB_RECEIVER_RE.search(pt.last_segment(call.receiver)))
    )


def _is_blocking(resolved: str) -> bool:
    return resolved in pt.BLOCKING_CALLS or resolved.startswith(pt.BLOCKING_PREFIXES)


def _http_verb(call: CallSite) -> str:
    """Return the lower-case HTTP verb a call issues, if it can be seen."""
    if call.method in ("request", "fetch", "urlopen", "stream"):
        candidates = [call.keyword("method") or ""]
        if call.args:
            candidates.append(call.args[0])
        for text in candidates:
            verb = text.strip("'\"").lower()
            if verb in pt.HTTP_METHODS:
                return verb
        return ""
    return call.method.lower()


def _has_timeout_keyword(call: CallSite) -> bool:
    return any(
        name in pt.TIMEOUT_KEYWORDS and value != "None" for name, value in call.keywords
    )


def _int(text: str) -> int | None:
    cleaned = text.strip().replace("_", "")
    return int(cleaned) if cleaned.isdigit() else None


# ---------------------------------------------------------------------------
# Retry analysis
# ---------------------------------------------------------------------------


def _iterates_collection(loop: LoopMarker) -> bool:
    return loop.kind == "for" and loop.bound is None and loop.bound_ref is None


def _counts_attempts(loop: LoopMarker) -> bool:
    return loop.infinite or loop.bound is not None or loop.bound_ref is not None


def _retry_style(
    item: Callable,
    resolved_decorators: list[tuple[str, CallSite]],
    resolved_calls: list[tuple[str, CallSite]],
    calls_network: bool,
) -> str | None:
    for target, _ in resolved_decorators:
        if target in pt.RETRY_DECORATORS or pt.last_segment(target) == "retry":
            return "decorator"
    for resolved, _ in resolved_calls:
        if resolved in pt.RETRY_CONSTRUCTORS:
            return "client"
    # Walking a collection visits each item once; it never repeats the same call.
    loops = [lp for lp in item.loops if not _iterates_collection(lp)]
    if loops:
        sleeps = any(r in pt.SLEEP_CALLS for r, _ in resolved_calls)
        if (
            any(h.action == "retry" for h in item.handlers)
            and any(_counts_attempts(lp) for lp in loops)
            and (calls_network or sleeps)
        ):
            return "loop"
        if sleeps and (item.handlers or calls_network):
            return "loop"
    return None


def _has_backoff(
    item: Callable,
    resolved_decorators: list[tuple[str, CallSite]],
    resolved_calls: list[tuple[str, CallSite]],
) -> bool:
    for resolved, call in [*resolved_decorators, *resolved_calls]:
        if pt.last_segment(resolved) in pt.BACKOFF_CALLS:
            return True
        if any(pt.last_segment(arg) in pt.BACKOFF_CALLS for arg in call.args):
            return True
        factor = call.keyword("backoff_factor")
        if factor is not None and factor not in ("0", "0.0", "None"):
            return True
        if resolved in pt.SLEEP_CALLS and call.args:
            delay = call.args[0]
            if "*" in delay or "<<" in delay or "backoff" in delay.lower():
                return True
    for token in item.literals:
        if token.kind == "augmented" and token.value.startswith(("*=", "**=", "<<=")):
            return True
        if token.target and "backoff" in token.target.lower():
            return True
    return False


def _bound_literal(ref: str, scopes: tuple[tuple[LiteralToken, ...], ...]) -> int | None:
    name = pt.last_segment(ref)
    for tokens in scopes:
        for token in tokens:
            if token.kind != "number" or token.target is None:
                continue
            if pt.last_segment(token.target) == name:
                value = _int(token.value)
                if value is not None:
                    return value
    return None


def _attempt_cap(
    item: Callable,
    unit: SourceUnit,
    resolved_calls: list[tuple[str, CallSite]],
    resolved_decorators: list[tuple[str, CallSite]],
) -> int | None:
    candidates: list[int] = []
    for resolved, call in [*resolved_decorators, *resolved_calls]:
        if pt.last_segment(resolved) in pt.ATTEMPT_CALLS and call.args:
            value = _int(call.args[0])
            if value is not None:
                candidates.append(value)
        if resolved in pt.RETRY_CONSTRUCTORS and call.args:
            value = _int(call.args[0])
            if value is not None:
                candidates.append(value)
        for name, text in call.keywords:
            if name in pt.ATTEMPT_KEYWORDS:
                value = _int(text)
                if value is not None:
                    candidates.append(value)

    scopes = (item.literals, unit.literals)
    for loop in item.loops:
        if loop.bound is not None:
            candidates.append(loop.bound)
        elif loop.bound_ref is not None:
            value = _bound_literal(loop.bound_ref, scopes)
            if value is not None:
                candidates.append(value)

    for token in item.literals:
        if token.kind == "number" and token.target is not None:
            if pt.ATTEMPT_NAME_RE.search(pt.last_segment(token.target)):
                value = _int(token.value)
                # A counter starting at 0 is not a limit.
                if value:
                    candidates.append(value)

    if candidates:
        return min(candidates)
    if any(pt.last_segment(r) == "Retry" for r, _ in resolved_calls):
        # urllib3 defaults to 10 attempts.
        return 10
    return None


def _status_codes(token: LiteralToken) -> list[int]:
    codes = [_int(part) for part in token.value.split(",")]
    return [c for c in codes if c is not None and 100 <= c <= 599]


def _retry_statuses(item: Callable, unit: SourceUnit) -> tuple[int, ...]:
    referenced = set(item.identifiers)
    tokens = list(item.literals)
    # Module constants count only when the callable refers to them.
    tokens.extend(
        t for t in unit.literals if t.target and pt.last_segment(t.target) in referenced
    )
    statuses: set[int] = set()
    for token in tokens:
        if token.target is None:
            continue
        if token.kind == "collection" and pt.STATUS_COLLECTION_TARGET_RE.search(token.target):
            statuses.update(_status_codes(token))
        elif token.kind == "number" and pt.STATUS_NUMBER_TARGET_RE.search(token.target):
            statuses.update(_status_codes(token))
    return tuple(sorted(statuses))


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _local_timeout(item: Callable, resolved_calls: list[tuple[str, CallSite]]) -> bool:
    for resolved, call in resolved_calls:
        if resolved in pt.TIMEOUT_CALLS:
            return True
        if _has_timeout_keyword(call) and (
            _is_network(resolved, call) or _is_construction(resolved)
        ):
            return True
    return any(
        t.target is not None and pt.TIMEOUT_NAME_RE.search(t.target)
        for t in item.literals
        if t.kind == "number"
    )


def _callable_metrics(
    item: Callable,
    unit: SourceUnit,
    aliases: dict[str, str],
    construction_timeout: bool,
) -> CallableMetrics:
    resolved_calls = [(resolve_target(c.target, aliases), c) for c in item.calls]
    resolved_decorators = [(resolve_target(d.target, aliases), d) for d in item.decorators]

    network: set[str] = set()
    io: set[str] = set()
    mutating: set[str] = set()
    blocking: set[str] = set()
    constructions: set[str] = set()
    logs: list[CallSite] = []
    for resolved, call in resolved_calls:
        if _is_construction(resolved):
            constructions.add(resolved)
            io.add(resolved)
        elif _is_network(resolved, call):
            network.add(resolved)
            io.add(resolved)
            if _http_verb(call) in pt.MUTATING_METHODS:
                mutating.add(resolved)
        elif _is_local_io(resolved, call):
            io.add(resolved)
        if _is_blocking(resolved) and not call.awaited:
            blocking.add(resolved)
        if pt.LOG_CALL_RE.match(resolved) or pt.LOG_CALL_RE.match(call.target):
            logs.append(call)

    if item.kind == "data-shape":
        category = "data-shape"
    elif io:
        category = "io"
    else:
        category = "logic"

    style = _retry_style(item, resolved_decorators, resolved_calls, bool(network))
    has_timeout = _local_timeout(item, resolved_calls)
    if not has_timeout and construction_timeout:
        has_timeout = any(
            call.receiver.split(".", 1)[0] in _RECEIVERS
            for resolved, call in resolved_calls
            if resolved in network
        )

    idem_identifier = any(pt.IDEMPOTENCY_RE.search(name) for name in item.identifiers) or any(
        pt.IDEMPOTENCY_RE.search(name) for _, call in resolved_calls for name, _ in call.keywords
    )
    idem_header = any(
        t.kind == "string" and pt.IDEMPOTENCY_RE.search(t.value) for t in item.literals
    )

    params = item.params
    if item.kind == "method" and params:
        # The receiver is not a parameter, unless the method is static.
        if not any(d.target == "staticmethod" for d in item.decorators):
            params = params[1:]

    return CallableMetrics(
        qualname=item.qualname,
        kind=item.kind,
        line=item.line_start,
        param_count=len(params),
        body_lines=item.body_lines,
        max_nesting=item.max_nesting,
        is_async=item.is_async,
        category=category,
        io_calls=tuple(sorted(io)),
        network_calls=tuple(sorted(network)),
        mutating_calls=tuple(sorted(mutating)),
        blocking_calls=tuple(sorted(blocking)) if item.is_async else (),
        client_constructions=tuple(sorted(constructions)),
        has_retry=style is not None,
        retry_style=style,
        has_backoff=bool(style) and _has_backoff(item, resolved_decorators, resolved_calls),
        has_timeout=has_timeout,
        retry_attempt_cap=(
            _attempt_cap(item, unit, resolved_calls, resolved_decorators) if style else None
        ),
        retry_statuses=_retry_statuses(item, unit) if style else (),
        idempotency_identifier=idem_identifier,
        idempotency_header=idem_header,
        log_calls=tuple(logs),
    )


def module_name(path: str) -> str:
    """Dotted module name for a unit path (``src/pkg/a.py`` -> ``pkg.a``)."""
    pure = PurePosixPath(path)
    parts = list(pure.with_suffix("").parts)
    if parts and parts[0] == "src":
        parts = parts[1:]
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


def directory_of(path: str) -> tuple[str, int]:
    """Return (directory, depth below the source root) for a unit path."""
    parent = PurePosixPath(path).parent
    parts = [p for p in parent.parts if p != "."]
    depth_parts = parts[1:] if parts and parts[0] == "src" else parts
    return (parent.as_posix() if parts else "."), len(depth_parts)


def _construction_timeouts(
    unit: SourceUnit, aliases: dict[str, str]
) -> dict[str, bool]:
    """Map class qualname -> whether a construction method configures a timeout."""
    found: dict[str, bool] = {}
    for item in unit.callables:
        owner, _, name = item.qualname.rpartition(".")
        if not owner or name not in _CONSTRUCTION_METHODS:
            continue
        resolved = [(resolve_target(c.target, aliases), c) for c in item.calls]
        if _local_timeout(item, resolved):
            found[owner] = True
    return found


def extract_metrics(unit: SourceUnit) -> FileMetrics:
    """Compute all metrics for *unit*. Never mutates the unit."""
    aliases = import_aliases(unit)
    timeouts = _construction_timeouts(unit, aliases)
    callables = tuple(
        _callable_metrics(
            item,
            unit,
            aliases,
            timeouts.get(item.qualname.rpartition(".")[0], False),
        )
        for item in unit.callables
    )

    categories = tuple(sorted({cm.category for cm in callables}))
    io_count = sum(1 for cm in callables if cm.is_io)
    styles = tuple(sorted({cm.retry_style for cm in callables if cm.retry_style}))
    directory, depth = directory_of(unit.path)
    unit_metrics = UnitMetrics(
        path=unit.path,
        module=module_name(unit.path),
        domain=unit.domain,
        directory=directory,
        directory_depth=depth,
        line_count=unit.line_count,
        code_line_count=unit.code_line_count,
        callable_count=len(callables),
        io_callable_count=io_count,
        pure_callable_count=len(callables) - io_count,
        categories=categories,
        uniform=len(categories) <= 1,
        implements_retry=any(cm.has_retry for cm in callables),
        retry_styles=styles,
    )
    return FileMetrics(unit=unit, unit_metrics=unit_metrics, callables=callables)
