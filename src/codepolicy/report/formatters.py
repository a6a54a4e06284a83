"""Report adapters: render a ScanResult as text, rich, JSON or porcelain."""

# codepolicy:domain=report

from __future__ import annotations

import json
from io import StringIO
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from codepolicy.engine.aggregator import ScanResult
    from codepolicy.rules.base import Finding

FORMATS: tuple[str, ...] = ("text", "rich", "json", "porcelain")

_SEVERITY_STYLES: dict[str, str] = {
    "error": "bold red",
    "warning": "yellow",
    "info": "cyan",
}


def _evidence_text(finding: Finding) -> str:
    return ", ".join(f"{key}={value}" for key, value in finding.evidence)


def _footer(result: ScanResult) -> str:
    elapsed = f"{result.elapsed_ms / 1000:.1f}s"
    violations = len(result.violations)
    failed = result.files_failed
    if violations:
        head = f"{violations} violations found"
    else:
        head = "✓ No violations found"
    parts = [f"{result.files_analyzed} files analyzed"]
    if failed:
        parts.append(f"{failed} could not be analyzed")
    parts.append(f"{result.rules_evaluated} rules evaluated")
    parts.append(elapsed)
    return f"{head} ({', '.join(parts)})"


def format_text(result: ScanResult) -> str:
    """Plain text, one block per finding.

    Example::

        Rules: 22 evaluated
        Files: 41 analyzed, 1 could not be analyzed

        ✗ [warning] missing-timeout
          src/client.py:12 (fetch) → network call without a timeout
          calls=requests.get

        ✗ [warning] scan-error
          src/broken.py:3 → src/broken.py:3:5: syntax error

        1 violations found (41 files analyzed, 1 could not be analyzed, 22 rules evaluated, 0.8s)
    """
    lines: list[str] = [
        f"Rules: {result.rules_evaluated} evaluated",
        f"Files: {result.files_analyzed} analyzed, {result.files_failed} could not be analyzed",
        "",
    ]

    for finding in result.findings:
        lines.append(f"✗ [{finding.severity.label}] {finding.rule_id}")
        where = finding.location
        if finding.callable:
            where += f" ({finding.callable})"
        lines.append(f"  {where} → {finding.message}")
        evidence = _evidence_text(finding)
        if evidence:
            lines.append(f"  {evidence}")
        for path, line in finding.related:
            lines.append(f"  also: {path}:{line}")
        lines.append("")

    if not result.complete:
        lines.append("! Scan timed out; results are partial and repository-wide rules were skipped")
    lines.append(_footer(result))
    return "\n".join(lines)


def format_rich(result: ScanResult, *, width: int = 120) -> str:
    """Rich table of findings plus a summary line, rendered to a string."""
    from rich.console import Console
    from rich.table import Table
    from rich.text import Text

    buf = StringIO()
    console = Console(file=buf, force_terminal=True, width=width)

    if result.findings:
        table = Table(show_lines=False, header_style="bold")
        table.add_column("Severity")
        table.add_column("Rule", style="cyan")
        table.add_column("Location")
        table.add_column("Callable", style="dim")
        table.add_column("Message")
        for finding in result.findings:
            label = finding.severity.label
            table.add_row(
                Text(label, style=_SEVERITY_STYLES.get(label, "")),
                Text(finding.rule_id),
                Text(finding.location),
                Text(finding.callable or ""),
                Text(finding.message),
            )
        console.print(table)

    if not result.complete:
        console.print("[bold yellow]Scan timed out; results are partial[/bold yellow]")
    style = "bold red" if result.violations else "bold green"
    console.print(Text(_footer(result), style=style))
    return buf.getvalue().rstrip("\n")


def format_json(result: ScanResult) -> str:
    """Structured JSON with a ``findings`` array and a ``summary`` object."""
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)


def format_porcelain(result: ScanResult) -> str:
    """One line per finding: ``severity:rule_id:path:line:callable``.

    Missing callables are empty strings. Returns an empty string when there
    are no findings.
    """
    if not result.findings:
        return ""
    return "\n".join(
        f"{f.severity.label}:{f.rule_id}:{f.path}:{f.line}:{f.callable or ''}"
        for f in result.findings
    )


_FORMATTERS: dict[str, Callable[[ScanResult], str]] = {
    "text": format_text,
    "rich": format_rich,
    "json": format_json,
    "porcelain": format_porcelain,
}


def render(result: ScanResult, fmt: str = "text") -> str:
    """Render *result* in one of :data:`FORMATS`."""
    try:
        formatter = _FORMATTERS[fmt]
    except KeyError:
        msg = f"unknown format '{fmt}', must be one of {list(FORMATS)}"
        raise ValueError(msg) from None
    return formatter(result)
