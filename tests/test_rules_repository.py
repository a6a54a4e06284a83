"""Tests for repository-wide rules driven by the Cross-File Index."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from codepolicy.engine import scan_units
from codepolicy.rules import Severity, ruleset_from_mapping

if TYPE_CHECKING:
    from collections.abc import Callable

    from codepolicy.engine import ScanResult
    from codepolicy.rules.base import Finding
    from codepolicy.symbols.model import SourceUnit

_RETRY_LOOP = """\
import time
import requests


def {name}(url):
    for attempt in range(3):
        try:
            return requests.get(url, timeout=5)
        except requests.RequestException:
            time.sleep(2 ** attempt)
    return None
"""


@pytest.fixture()
def scan_sources(
    parse: Callable[..., SourceUnit],
) -> Callable[..., ScanResult]:
    def _scan(files: dict[str, str], **kwargs: object) -> ScanResult:
        return scan_units([parse(source, path) for path, source in files.items()], **kwargs)

    return _scan


def _only(result: ScanResult, rule_id: str) -> list[Finding]:
    return [f for f in result.findings if f.rule_id == rule_id]


class TestDuplicateRetryHelper:
    def test_two_independent_loops(self, scan_sources: Callable[..., ScanResult]) -> None:
        result = scan_sources({
            "orders/client.py": _RETRY_LOOP.format(name="fetch_orders"),
            "users/client.py": _RETRY_LOOP.format(name="fetch_users"),
        })
        found = _only(result, "duplicate-retry-helper")
        assert len(found) == 1
        assert found[0].severity is Severity.WARNING
        assert [path for path, _ in found[0].related] == ["orders/client.py", "users/client.py"]
        assert found[0].path == "orders/client.py"
        assert found[0].line == 5

    def test_three_files_still_one_finding(
        self, scan_sources: Callable[..., ScanResult]
    ) -> None:
        result = scan_sources({
            "orders/client.py": _RETRY_LOOP.format(name="fetch_orders"),
            "users/client.py": _RETRY_LOOP.format(name="fetch_users"),
            "stock/client.py": _RETRY_LOOP.format(name="fetch_stock"),
        })
        found = _only(result, "duplicate-retry-helper")
        assert len(found) == 1
        assert dict(found[0].evidence)["files"] == (
            "orders/client.py",
            "stock/client.py",
            "users/client.py",
        )

    def test_single_implementation_is_fine(
        self, scan_sources: Callable[..., ScanResult]
    ) -> None:
        result = scan_sources({
            "orders/client.py": _RETRY_LOOP.format(name="fetch_orders"),
            "users/view.py": "def show(user):\n    return user.name\n",
        })
        assert _only(result, "duplicate-retry-helper") == []

    def test_threshold_from_ruleset(self, scan_sources: Callable[..., ScanResult]) -> None:
        ruleset = ruleset_from_mapping({
            "version": 1,
            "rules": {"duplicate-retry-helper": {"thresholds": {"min_units": 3}}},
        })
        result = scan_sources(
            {
                "orders/client.py": _RETRY_LOOP.format(name="fetch_orders"),
                "users/client.py": _RETRY_LOOP.format(name="fetch_users"),
            },
            ruleset=ruleset,
        )
        assert _only(result, "duplicate-retry-helper") == []


class TestDuplicateDefinition:
    def test_same_function_in_three_files(
        self, scan_sources: Callable[..., ScanResult]
    ) -> None:
        slugify = "def slugify(text):\n    return text.lower().replace(' ', '-')\n"
        result = scan_sources({
            "blog/text.py": slugify,
            "shop/text.py": slugify,
            "wiki/text.py": slugify,
        })
        found = _only(result, "duplicate-definition")
        assert len(found) == 1
        assert found[0].path == "blog/text.py"
        assert found[0].callable == "slugify"
        assert dict(found[0].evidence)["files"] == 3

    def test_two_files_are_below_threshold(
        self, scan_sources: Callable[..., ScanResult]
    ) -> None:
        slugify = "def slugify(text):\n    return text.lower()\n"
        result = scan_sources({"blog/text.py": slugify, "shop/text.py": slugify})
        assert _only(result, "duplicate-definition") == []


class TestSharedHelperLocation:
    def test_cross_domain_helper(self, scan_sources: Callable[..., ScanResult]) -> None:
        result = scan_sources({
            "billing/money.py": "def format_amount(value):\n    return f'{value:.2f}'\n",
            "orders/view.py": (
                "from billing.money import format_amount\n\n"
                "def show(order):\n    return format_amount(order.total)\n"
            ),
            "shipping/label.py": (
                "from billing.money import format_amount\n\n"
                "def label(parcel):\n    return format_amount(parcel.cost)\n"
            ),
            "reports/summary.py": (
                "from billing.money import format_amount\n\n"
                "def total(rows):\n    return format_amount(sum(rows))\n"
            ),
        })
        found = _only(result, "shared-helper-location")
        assert len(found) == 1
        assert found[0].path == "billing/money.py"
        assert found[0].severity is Severity.INFO
        assert dict(found[0].evidence)["fan_in"] == 3

    def test_helper_in_shared_module(self, scan_sources: Callable[..., ScanResult]) -> None:
        user = (
            "from common.money import format_amount\n\n"
            "def show(x):\n    return format_amount(x)\n"
        )
        result = scan_sources({
            "common/money.py": "def format_amount(value):\n    return str(value)\n",
            "orders/view.py": user,
            "shipping/view.py": user,
            "reports/view.py": user,
        })
        assert _only(result, "shared-helper-location") == []


class TestDirectoryLayout:
    def test_deep_directory(self, scan_sources: Callable[..., ScanResult]) -> None:
        result = scan_sources({"a/b/c/d/e.py": "x = 1\n", "a/top.py": "x = 1\n"})
        found = _only(result, "directory-depth")
        assert len(found) == 1
        assert found[0].path == "a/b/c/d"
        assert found[0].line == 0
        assert found[0].location == "a/b/c/d"
        assert dict(found[0].evidence)["depth"] == 4

    def test_src_root_does_not_count(self, scan_sources: Callable[..., ScanResult]) -> None:
        result = scan_sources({"src/a/b/c/e.py": "x = 1\n"})
        assert _only(result, "directory-depth") == []

    def test_crowded_directory(self, scan_sources: Callable[..., ScanResult]) -> None:
        files = {f"pkg/mod_{i:02d}.py": "x = 1\n" for i in range(21)}
        found = _only(scan_sources(files), "directory-size")
        assert len(found) == 1
        assert found[0].path == "pkg"
        assert dict(found[0].evidence)["file_count"] == 21

    def test_twenty_files_is_fine(self, scan_sources: Callable[..., ScanResult]) -> None:
        files = {f"pkg/mod_{i:02d}.py": "x = 1\n" for i in range(20)}
        assert _only(scan_sources(files), "directory-size") == []
