"""Tests for codepolicy.rules.ruleset: loading and validating rule sets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import pytest

from codepolicy.errors import ConfigurationError
from codepolicy.rules import Severity
from codepolicy.rules.ruleset import (
    ScanSettings,
    default_ruleset,
    find_config,
    load_ruleset,
    ruleset_from_mapping,
)

if TYPE_CHECKING:
    from pathlib import Path


def _with_rules(rules: dict[str, Any]) -> dict[str, Any]:
    return {"version": 1, "rules": rules}


class TestDefaultRuleSet:
    def test_contains_builtin_rules(self) -> None:
        ruleset = default_ruleset()
        assert ruleset.name == "default"
        assert ruleset.source is None
        for rule_id in ("file-size", "mixed-concern", "param-count", "scan-error"):
            assert rule_id in ruleset
        assert len({r.id for r in ruleset}) == len(ruleset)

    def test_documented_defaults(self) -> None:
        ruleset = default_ruleset()
        assert ruleset.get("file-size").threshold("max_lines") == 500
        assert ruleset.get("param-count").threshold("max_params") == 4
        assert ruleset.get("mixed-concern").severity is Severity.ERROR
        assert ruleset.get("swallowed-exception").severity is Severity.WARNING
        assert ruleset.settings == ScanSettings()

    def test_enabled_by_scope(self) -> None:
        index_rules = default_ruleset().enabled("index")
        assert {r.id for r in index_rules} >= {"duplicate-retry-helper", "directory-depth"}
        assert all(r.scope == "index" for r in index_rules)


class TestOverrides:
    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yml"
        path.write_text(
            "version: 1\n"
            "name: strict\n"
            "rules:\n"
            "  param-count:\n"
            "    severity: error\n"
            "    thresholds:\n"
            "      max_params: 6\n"
            "  swallowed-exception:\n"
            "    toggles:\n"
            "      logged_counts_as_swallowed: true\n",
            encoding="utf-8",
        )
        ruleset = load_ruleset(path)
        assert ruleset.name == "strict"
        assert ruleset.source == str(path)
        param = ruleset.get("param-count")
        assert param.severity is Severity.ERROR
        assert param.threshold("max_params") == 6
        assert ruleset.get("swallowed-exception").toggle("logged_counts_as_swallowed") is True

    def test_untouched_rules_keep_defaults(self) -> None:
        ruleset = ruleset_from_mapping(_with_rules({"param-count": {"severity": "info"}}))
        assert ruleset.get("file-size") == default_ruleset().get("file-size")

    def test_bool_shorthand(self) -> None:
        ruleset = ruleset_from_mapping(_with_rules({"vague-module-name": False}))
        assert ruleset.get("vague-module-name").enabled is False
        assert "vague-module-name" not in {r.id for r in ruleset.enabled()}

    def test_warn_alias(self) -> None:
        ruleset = ruleset_from_mapping(_with_rules({"nesting-depth": {"severity": "WARN"}}))
        assert ruleset.get("nesting-depth").severity is Severity.WARNING

    def test_scan_settings(self) -> None:
        ruleset = ruleset_from_mapping({
            "version": 1,
            "scan": {"exclude": ["migrations/*"], "workers": 2, "timeout": 30, "cache": False},
        })
        assert ruleset.settings == ScanSettings(
            exclude=("migrations/*",), workers=2, timeout=30.0, cache=False
        )

    def test_unknown_rule_id_is_skipped_with_warning(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.WARNING, logger="codepolicy")
        ruleset = ruleset_from_mapping(_with_rules({"no-such-rule": False}))
        assert "no-such-rule" not in ruleset
        assert "no-such-rule" in caplog.text


class TestValidation:
    @pytest.mark.parametrize(
        ("data", "fragment"),
        [
            ({"version": 2}, "unsupported version"),
            ({"rules": {}}, "missing required 'version'"),
            ({"version": 1, "colour": "red"}, "unknown key"),
            (_with_rules({"param-count": {"severity": "fatal"}}), "invalid severity"),
            (_with_rules({"param-count": {"thresholds": {"max_args": 3}}}), "unknown threshold"),
            (_with_rules({"file-size": {"toggles": {"strict": True}}}), "unknown toggle"),
            (_with_rules({"param-count": {"thresholds": {"max_params": "4"}}}), "must be a number"),
            (_with_rules({"param-count": {"thresholds": {"max_params": -1}}}), "non-negative"),
            (_with_rules({"file-size": {"toggles": {"uniform_exemption": "no"}}}), "true or false"),
            (_with_rules({"scan-error": False}), "cannot be disabled"),
            (_with_rules({"param-count": {"enabled": "yes"}}), "'enabled' must be"),
            ({"version": 1, "scan": {"workers": 0}}, "positive integer"),
            ({"version": 1, "scan": {"timeout": -5}}, "positive number"),
            ({"version": 1, "scan": {"exclude": "build/*"}}, "list of glob strings"),
        ],
    )
    def test_rejected(self, data: dict[str, Any], fragment: str) -> None:
        with pytest.raises(ConfigurationError, match=fragment):
            ruleset_from_mapping(data)

    def test_non_mapping_document(self) -> None:
        with pytest.raises(ConfigurationError, match="must be a YAML mapping"):
            ruleset_from_mapping(["param-count"])

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yml"
        path.write_text("version: 1\nrules: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            load_ruleset(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="cannot read rule set"):
            load_ruleset(tmp_path / "absent.yml")


class TestFindConfig:
    def test_yml_then_yaml(self, tmp_path: Path) -> None:
        assert find_config(tmp_path) is None
        (tmp_path / ".codepolicy.yaml").write_text("version: 1\n", encoding="utf-8")
        assert find_config(tmp_path) == tmp_path / ".codepolicy.yaml"
        (tmp_path / ".codepolicy.yml").write_text("version: 1\n", encoding="utf-8")
        assert find_config(tmp_path) == tmp_path / ".codepolicy.yml"
