"""Shared test fixtures for codepolicy."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import pytest

from codepolicy.engine.evaluator import evaluate_file
from codepolicy.metrics.extractor import extract_metrics
from codepolicy.rules.ruleset import default_ruleset
from codepolicy.symbols.python_parser import parse_python

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from codepolicy.metrics.extractor import CallableMetrics, FileMetrics
    from codepolicy.rules.base import Finding
    from codepolicy.rules.ruleset import RuleSet
    from codepolicy.symbols.model import SourceUnit


def unit_of(source: str, path: str = "app/service.py") -> SourceUnit:
    """Parse dedented *source* as if it lived at *path*."""
    return parse_python(path, textwrap.dedent(source).encode("utf-8"))


@pytest.fixture()
def parse() -> Callable[..., SourceUnit]:
    return unit_of


@pytest.fixture()
def file_metrics() -> Callable[..., FileMetrics]:
    def _file_metrics(source: str, path: str = "app/service.py") -> FileMetrics:
        return extract_metrics(unit_of(source, path))

    return _file_metrics


@pytest.fixture()
def callable_metrics() -> Callable[..., CallableMetrics]:
    """Metrics for one callable, looked up by qualname."""

    def _callable_metrics(
        source: str, qualname: str, path: str = "app/service.py"
    ) -> CallableMetrics:
        found = extract_metrics(unit_of(source, path)).for_callable(qualname)
        assert found is not None, f"{qualname} not found"
        return found

    return _callable_metrics


@pytest.fixture()
def analyze() -> Callable[..., list[Finding]]:
    """Run the per-file rules over *source* and keep findings of *rule_id*."""

    def _analyze(
        source: str,
        rule_id: str | None = None,
        *,
        path: str = "app/service.py",
        ruleset: RuleSet | None = None,
    ) -> list[Finding]:
        fm = extract_metrics(unit_of(source, path))
        found = evaluate_file(fm, ruleset or default_ruleset())
        return [f for f in found if rule_id is None or f.rule_id == rule_id]

    return _analyze


@pytest.fixture()
def write_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{relative path: source}`` under a fresh project root."""

    def _write(files: dict[str, str]) -> Path:
        root = tmp_path / "proj"
        root.mkdir(exist_ok=True)
        for rel, source in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(textwrap.dedent(source), encoding="utf-8")
        return root

    return _write
