"""Rule severity, Finding, Rule and the rule registry."""

# codepolicy:domain=rules

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from codepolicy.index.cross_file import CrossFileIndex
    from codepolicy.metrics.extractor import CallableMetrics, FileMetrics
    from codepolicy.symbols.model import Callable as SymbolCallable

    CheckFn = Callable[["RuleContext"], Iterable["Finding"]]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RULE_SCOPES: tuple[str, ...] = ("callable", "unit", "index", "engine")
RULE_CATEGORIES: frozenset[str] = frozenset({
    "architecture",
    "naming",
    "testability",
    "async",
    "error-handling",
    "security",
    "logging",
    "scan-error",
})
DEFAULT_KINDS: frozenset[str] = frozenset({"function", "method"})

SCAN_ERROR_RULE_ID = "scan-error"


class Severity(IntEnum):
    """Finding severity, ordered for threshold comparison."""

    INFO = 1
    WARNING = 2
    ERROR = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    def __str__(self) -> str:
        return self.label

    @classmethod
    def parse(cls, value: str | Severity) -> Severity:
        """Parse ``info`` / ``warning`` (or ``warn``) / ``error``, case-insensitively."""
        if isinstance(value, Severity):
            return value
        text = str(value).strip().lower()
        if text == "warn":
            text = "warning"
        try:
            return cls[text.upper()]
        except KeyError:
            valid = sorted(s.label for s in cls)
            msg = f"invalid severity '{value}', must be one of {valid}"
            raise ValueError(msg) from None


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Finding:
    """One rule violation or scan diagnostic.

    Two findings are equal when rule, location and evidence match; the
    human-readable ``message``, ``severity`` and ``category`` do not take part.
    """

    rule_id: str
    path: str
    line: int = 1
    callable: str | None = None
    evidence: tuple[tuple[str, Any], ...] = ()
    related: tuple[tuple[str, int], ...] = ()
    severity: Severity = field(default=Severity.WARNING, compare=False)
    category: str = field(default="", compare=False)
    message: str = field(default="", compare=False)

    @property
    def location(self) -> str:
        # Directory-level findings carry no line.
        if self.line <= 0:
            return self.path
        return f"{self.path}:{self.line}"

    @property
    def is_scan_error(self) -> bool:
        return self.rule_id == SCAN_ERROR_RULE_ID

    def sort_key(self) -> tuple[str, int, str, str, str]:
        return (self.path, self.line, self.rule_id, self.callable or "", repr(self.evidence))

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.label,
            "category": self.category,
            "message": self.message,
            "path": self.path,
            "line": self.line,
            "callable": self.callable,
            "evidence": {key: value for key, value in self.evidence},
            "related": [{"path": p, "line": ln} for p, ln in self.related],
        }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    """A named, configurable check over one applicability scope."""

    id: str
    category: str
    scope: str  # one of RULE_SCOPES
    severity: Severity
    description: str
    check: CheckFn = field(compare=False, repr=False)
    thresholds: tuple[tuple[str, int | float], ...] = ()
    toggles: tuple[tuple[str, bool], ...] = ()
    kinds: frozenset[str] = DEFAULT_KINDS
    enabled: bool = True

    def threshold(self, name: str) -> int | float:
        for key, value in self.thresholds:
            if key == name:
                return value
        msg = f"Rule '{self.id}' has no threshold '{name}'"
        raise KeyError(msg)

    def toggle(self, name: str) -> bool:
        for key, value in self.toggles:
            if key == name:
                return value
        msg = f"Rule '{self.id}' has no toggle '{name}'"
        raise KeyError(msg)

    def configured(
        self,
        *,
        enabled: bool | None = None,
        severity: Severity | None = None,
        thresholds: Mapping[str, int | float] | None = None,
        toggles: Mapping[str, bool] | None = None,
    ) -> Rule:
        """Return a copy with overrides applied.

        Raises ``ValueError`` for threshold or toggle names the rule does not have.
        """
        new_thresholds = dict(self.thresholds)
        for name, value in (thresholds or {}).items():
            if name not in new_thresholds:
                msg = (
                    f"Rule '{self.id}': unknown threshold '{name}', "
                    f"must be one of {sorted(new_thresholds)}"
                )
                raise ValueError(msg)
            new_thresholds[name] = value
        new_toggles = dict(self.toggles)
        for name, flag in (toggles or {}).items():
            if name not in new_toggles:
                msg = (
                    f"Rule '{self.id}': unknown toggle '{name}', "
                    f"must be one of {sorted(new_toggles)}"
                )
                raise ValueError(msg)
            new_toggles[name] = flag
        return replace(
            self,
            enabled=self.enabled if enabled is None else enabled,
            severity=self.severity if severity is None else severity,
            thresholds=tuple(new_thresholds.items()),
            toggles=tuple(new_toggles.items()),
        )


@dataclass(frozen=True)
class RuleContext:
    """What a rule's check sees for one evaluation.

    Callable-scope rules get ``file``, ``symbol`` and ``metrics``; unit-scope
    rules get ``file``; index-scope rules get ``index`` and every ``files``.
    """

    rule: Rule
    file: FileMetrics | None = None
    symbol: SymbolCallable | None = None
    metrics: CallableMetrics | None = None
    index: CrossFileIndex | None = None
    files: tuple[FileMetrics, ...] = ()

    def finding(
        self,
        message: str,
        *,
        line: int | None = None,
        path: str | None = None,
        callable: str | None = None,
        severity: Severity | None = None,
        evidence: Iterable[tuple[str, Any]] = (),
        related: Iterable[tuple[str, int]] = (),
    ) -> Finding:
        """Build a Finding for this rule, filling location from the context."""
        if path is None:
            path = self.file.unit.path if self.file is not None else ""
        if callable is None and self.symbol is not None:
            callable = self.symbol.qualname
        if line is None:
            line = self.symbol.line_start if self.symbol is not None else 1
        return Finding(
            rule_id=self.rule.id,
            path=path,
            line=line,
            callable=callable,
            evidence=tuple(sorted(evidence)),
            related=tuple(sorted(related)),
            severity=self.rule.severity if severity is None else severity,
            category=self.rule.category,
            message=message,
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: list[Rule] = []


def rule(
    rule_id: str,
    *,
    category: str,
    scope: str,
    severity: Severity,
    description: str,
    thresholds: Mapping[str, int | float] | None = None,
    toggles: Mapping[str, bool] | None = None,
    kinds: Iterable[str] | None = None,
) -> Callable[[CheckFn], CheckFn]:
    """Register the decorated check function as a built-in rule."""
    if scope not in RULE_SCOPES:
        msg = f"Rule '{rule_id}': invalid scope '{scope}', must be one of {list(RULE_SCOPES)}"
        raise ValueError(msg)
    if category not in RULE_CATEGORIES:
        msg = f"Rule '{rule_id}': invalid category '{category}'"
        raise ValueError(msg)

    def decorator(fn: CheckFn) -> CheckFn:
        if any(existing.id == rule_id for existing in _REGISTRY):
            msg = f"Duplicate rule id '{rule_id}'"
            raise ValueError(msg)
        _REGISTRY.append(
            Rule(
                id=rule_id,
                category=category,
                scope=scope,
                severity=severity,
                description=description,
                check=fn,
                thresholds=tuple((thresholds or {}).items()),
                toggles=tuple((toggles or {}).items()),
                kinds=frozenset(kinds) if kinds is not None else DEFAULT_KINDS,
            )
        )
        return fn

    return decorator


def registered_rules() -> tuple[Rule, ...]:
    """Every registered rule, in registration order."""
    return tuple(_REGISTRY)


@rule(
    SCAN_ERROR_RULE_ID,
    category="scan-error",
    scope="engine",
    severity=Severity.WARNING,
    description="File could not be analyzed, or a rule crashed on it",
)
def scan_error(ctx: RuleContext) -> Iterable[Finding]:
    """Never evaluated; the evaluator emits these findings itself."""
    return ()
