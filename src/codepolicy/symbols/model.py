"""Language-agnostic Symbol Model: SourceUnit, Callable and their parts.

Instances are produced by source adapters and never mutated afterwards.
Every collection is a tuple so the whole model is hashable and safe to
share between worker threads.
"""

# codepolicy:domain=symbols

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import PurePosixPath
from typing import Any

CALLABLE_KINDS: frozenset[str] = frozenset({"function", "method", "data-shape"})
HANDLER_ACTIONS: frozenset[str] = frozenset(
    {"rethrow", "swallow", "retry", "fallback", "log", "handle"}
)
LITERAL_KINDS: frozenset[str] = frozenset({"string", "number", "collection", "augmented"})


@dataclass(frozen=True)
class CallSite:
    """A call expression (or decorator application) inside a callable."""

    target: str  # dotted callee text, e.g. "self.session.post"
    line: int
    args: tuple[str, ...] = ()  # raw text of positional arguments
    keywords: tuple[tuple[str, str], ...] = ()  # (name, raw value text)
    awaited: bool = False

    @property
    def method(self) -> str:
        """Last dotted segment of the target (``post`` for ``client.post``)."""
        return self.target.rsplit(".", 1)[-1]

    @property
    def receiver(self) -> str:
        """Everything before the last dotted segment, or ``""``."""
        head, _, _ = self.target.rpartition(".")
        return head

    def keyword(self, name: str) -> str | None:
        """Return the raw text bound to keyword *name*, if present."""
        for key, value in self.keywords:
            if key == name:
                return value
        return None


@dataclass(frozen=True)
class LoopMarker:
    """A ``for``/``while`` loop with its statically visible iteration cap."""

    kind: str  # "for" | "while"
    line: int
    bound: int | None = None
    bound_ref: str | None = None  # identifier used as the bound, if not a literal
    infinite: bool = False


@dataclass(frozen=True)
class ErrorHandler:
    """A catch block and what it does with the error."""

    line: int
    caught: tuple[str, ...]  # empty tuple means a bare catch
    action: str  # one of HANDLER_ACTIONS


@dataclass(frozen=True)
class LiteralToken:
    """A literal plus the identifier it is bound to or compared against."""

    kind: str  # one of LITERAL_KINDS
    value: str
    line: int
    target: str | None = None
    formatted: bool = False  # f-string / template literal


@dataclass(frozen=True)
class DependencyEdge:
    """An import from one unit to a module (another unit or an external symbol)."""

    source: str  # importing unit path
    target: str  # dotted module name, without leading dots
    line: int
    names: tuple[str, ...] = ()
    alias: str | None = None
    relative_level: int = 0


@dataclass(frozen=True)
class Callable:
    """A function, method or data-shape declaration within a SourceUnit."""

    name: str
    qualname: str
    kind: str  # one of CALLABLE_KINDS
    line_start: int
    line_end: int
    params: tuple[str, ...] = ()
    max_nesting: int = 0
    is_async: bool = False
    calls: tuple[CallSite, ...] = ()
    decorators: tuple[CallSite, ...] = ()
    loops: tuple[LoopMarker, ...] = ()
    handlers: tuple[ErrorHandler, ...] = ()
    literals: tuple[LiteralToken, ...] = ()
    identifiers: tuple[str, ...] = ()

    @property
    def body_lines(self) -> int:
        return self.line_end - self.line_start + 1

    @property
    def param_count(self) -> int:
        return len(self.params)


@dataclass(frozen=True)
class SourceUnit:
    """One analysed file."""

    path: str
    language: str
    domain: str
    line_count: int
    code_line_count: int
    callables: tuple[Callable, ...] = ()
    imports: tuple[DependencyEdge, ...] = ()
    literals: tuple[LiteralToken, ...] = ()
    annotations: tuple[tuple[str, str], ...] = ()
    content_hash: str = ""

    def callable(self, qualname: str) -> Callable | None:
        for item in self.callables:
            if item.qualname == qualname:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form used by the persistent cache and debug output."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Deserialisation
# ---------------------------------------------------------------------------


def _pairs(raw: Any) -> tuple[tuple[str, str], ...]:
    return tuple((str(k), str(v)) for k, v in raw)


def _call_from_dict(data: dict[str, Any]) -> CallSite:
    return CallSite(
        target=data["target"],
        line=int(data["line"]),
        args=tuple(data.get("args", ())),
        keywords=_pairs(data.get("keywords", ())),
        awaited=bool(data.get("awaited", False)),
    )


def _callable_from_dict(data: dict[str, Any]) -> Callable:
    return Callable(
        name=data["name"],
        qualname=data["qualname"],
        kind=data["kind"],
        line_start=int(data["line_start"]),
        line_end=int(data["line_end"]),
        params=tuple(data.get("params", ())),
        max_nesting=int(data.get("max_nesting", 0)),
        is_async=bool(data.get("is_async", False)),
        calls=tuple(_call_from_dict(c) for c in data.get("calls", ())),
        decorators=tuple(_call_from_dict(c) for c in data.get("decorators", ())),
        loops=tuple(LoopMarker(**lp) for lp in data.get("loops", ())),
        handlers=tuple(
            ErrorHandler(line=int(h["line"]), caught=tuple(h["caught"]), action=h["action"])
            for h in data.get("handlers", ())
        ),
        literals=tuple(LiteralToken(**lt) for lt in data.get("literals", ())),
        identifiers=tuple(data.get("identifiers", ())),
    )


def unit_from_dict(data: dict[str, Any]) -> SourceUnit:
    """Rebuild a SourceUnit from :meth:`SourceUnit.to_dict` output."""
    return SourceUnit(
        path=data["path"],
        language=data["language"],
        domain=data["domain"],
        line_count=int(data["line_count"]),
        code_line_count=int(data["code_line_count"]),
        callables=tuple(_callable_from_dict(c) for c in data.get("callables", ())),
        imports=tuple(
            DependencyEdge(
                source=e["source"],
                target=e["target"],
                line=int(e["line"]),
                names=tuple(e.get("names", ())),
                alias=e.get("alias"),
                relative_level=int(e.get("relative_level", 0)),
            )
            for e in data.get("imports", ())
        ),
        literals=tuple(LiteralToken(**lt) for lt in data.get("literals", ())),
        annotations=_pairs(data.get("annotations", ())),
        content_hash=data.get("content_hash", ""),
    )


# ---------------------------------------------------------------------------
# Domain inference
# ---------------------------------------------------------------------------

# Directory names that carry no domain meaning.
_GENERIC_DIRS: frozenset[str] = frozenset({"src", "lib", "app", "pkg", "source", "python"})


def infer_domain(path: str) -> str:
    """Infer a logical domain from a unit path.

    The nearest directory that is not a generic source root wins; top-level
    files fall back to their stem (``billing_client.py`` -> ``billing_client``).
    """
    parts = PurePosixPath(path).parts
    dirs = [part for part in parts[:-1] if part not in _GENERIC_DIRS]
    if dirs:
        return dirs[-1]
    return PurePosixPath(path).stem
