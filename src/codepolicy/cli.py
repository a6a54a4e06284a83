"""codepolicy CLI entry point."""

# codepolicy:domain=cli

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from codepolicy import __version__
from codepolicy.engine.aggregator import EXIT_ERROR
from codepolicy.errors import ConfigurationError
from codepolicy.logging_config import setup_logging
from codepolicy.report.formatters import FORMATS, render
from codepolicy.rules.base import Severity
from codepolicy.rules.ruleset import (
    RuleSet,
    ScanSettings,
    default_ruleset,
    find_config,
    load_ruleset,
)

_SEVERITY_CHOICES = [s.label for s in Severity]


@click.group()
@click.version_option(version=__version__, prog_name="codepolicy")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """codepolicy - architecture and resilience policy checks for source trees."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    setup_logging(verbose=verbose, quiet=quiet)


def _load(ruleset_path: Path | None, root: Path) -> RuleSet:
    """Explicit ``--ruleset`` wins; otherwise ``.codepolicy.yml`` in *root*, then defaults."""
    if ruleset_path is not None:
        return load_ruleset(ruleset_path)
    config_dir = root if root.is_dir() else root.parent
    found = find_config(config_dir)
    if found is not None:
        return load_ruleset(found)
    return default_ruleset()


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option(
    "--ruleset",
    "ruleset_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Rule-set YAML file (default: .codepolicy.yml in PATH).",
)
@click.option(
    "--severity-threshold",
    "threshold",
    type=click.Choice(_SEVERITY_CHOICES, case_sensitive=False),
    default="warning",
    show_default=True,
    help="Exit 1 when a finding is at or above this severity.",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(list(FORMATS)),
    default=None,
    help="Output format (default: text on a TTY, porcelain otherwise).",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Worker threads.")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Deadline for the whole scan, in seconds.",
)
@click.option("--no-cache", is_flag=True, default=False, help="Do not use the on-disk cache.")
def scan(
    *,
    path: Path,
    ruleset_path: Path | None,
    threshold: str,
    fmt: str | None,
    workers: int | None,
    timeout: float | None,
    no_cache: bool,
) -> None:
    """Scan PATH (a directory or a single file) against the active rule set.

    Exit codes: 0 = no finding at or above the threshold,
    1 = findings at or above the threshold, 2 = the scan could not run,
    3 = the scan timed out (partial result, nothing at or above the threshold).
    """
    from codepolicy.engine.cache import open_cache
    from codepolicy.engine.evaluator import scan as run_scan

    if not path.exists():
        click.echo(f"Error: path '{path}' does not exist.", err=True)
        sys.exit(EXIT_ERROR)

    try:
        ruleset = _load(ruleset_path, path)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_ERROR)

    base = ruleset.settings
    settings = ScanSettings(
        exclude=base.exclude,
        workers=workers or base.workers,
        timeout=timeout or base.timeout,
        cache=base.cache and not no_cache,
    )

    # Resolve output format: explicit flag > TTY detection.
    if fmt is None:
        fmt = "text" if sys.stdout.isatty() else "porcelain"

    cache_root = path if path.is_dir() else path.parent
    cache = open_cache(cache_root) if settings.cache else None
    try:
        result = run_scan(path, ruleset, settings, cache=cache)
    finally:
        if cache is not None:
            cache.close()

    output = render(result, fmt)
    if output:
        click.echo(output)

    sys.exit(result.exit_code(Severity.parse(threshold)))


# ---------------------------------------------------------------------------
# rules
# ---------------------------------------------------------------------------


@main.command("rules")
@click.option(
    "--ruleset",
    "ruleset_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Rule-set YAML file (default: .codepolicy.yml in the current directory).",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
def rules_cmd(*, ruleset_path: Path | None, as_json: bool) -> None:
    """List the active rules with their severity and thresholds."""
    try:
        ruleset = _load(ruleset_path, Path.cwd())
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_ERROR)

    if as_json:
        click.echo(json.dumps(ruleset.to_dict(), indent=2))
        return

    click.echo(f"Rule set: {ruleset.name} ({ruleset.source or 'built-in defaults'})")
    click.echo("")
    for item in ruleset:
        mark = "✓" if item.enabled else "-"
        click.echo(f"{mark} {item.id} [{item.severity.label}] {item.category}/{item.scope}")
        click.echo(f"  {item.description}")
        settings = [f"{k}={v}" for k, v in item.thresholds + item.toggles]
        if settings:
            click.echo(f"  {', '.join(settings)}")
