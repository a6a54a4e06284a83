"""Rule Set: the active rules plus scan settings, loaded from YAML."""

# codepolicy:domain=rules

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import yaml

from codepolicy.errors import ConfigurationError

# Importing the rule modules registers the built-in rules.
from codepolicy.rules import architecture, hygiene, repository, resilience  # noqa: F401
from codepolicy.rules.base import SCAN_ERROR_RULE_ID, Rule, Severity, registered_rules

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

SUPPORTED_CONFIG_VERSIONS: frozenset[int] = frozenset({1})
CONFIG_FILENAMES: tuple[str, ...] = (".codepolicy.yml", ".codepolicy.yaml")

_TOP_LEVEL_KEYS = frozenset({"version", "name", "rules", "scan"})
_RULE_KEYS = frozenset({"enabled", "severity", "thresholds", "toggles"})
_SCAN_KEYS = frozenset({"exclude", "workers", "timeout", "cache"})


@dataclass(frozen=True)
class ScanSettings:
    """Evaluator settings that may come from the rule-set file or the CLI."""

    exclude: tuple[str, ...] = ()
    workers: int | None = None  # None: min(cpu_count, 8)
    timeout: float | None = None  # seconds for the whole scan
    cache: bool = True


@dataclass(frozen=True)
class RuleSet:
    """Ordered, named collection of configured rules."""

    name: str
    rules: tuple[Rule, ...]
    settings: ScanSettings = field(default_factory=ScanSettings)
    source: str | None = None  # config file the set was loaded from

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, rule_id: object) -> bool:
        return any(r.id == rule_id for r in self.rules)

    def get(self, rule_id: str) -> Rule | None:
        for item in self.rules:
            if item.id == rule_id:
                return item
        return None

    def enabled(self, scope: str | None = None) -> tuple[Rule, ...]:
        """Enabled rules, optionally restricted to one scope."""
        return tuple(
            r for r in self.rules if r.enabled and (scope is None or r.scope == scope)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "rules": [
                {
                    "id": r.id,
                    "category": r.category,
                    "scope": r.scope,
                    "severity": r.severity.label,
                    "enabled": r.enabled,
                    "description": r.description,
                    "thresholds": dict(r.thresholds),
                    "toggles": dict(r.toggles),
                }
                for r in self.rules
            ],
        }


def default_ruleset() -> RuleSet:
    """Every built-in rule with its default configuration."""
    return RuleSet(name="default", rules=registered_rules())


def find_config(root: Path) -> Path | None:
    """Return the rule-set file in *root*, if one exists."""
    for name in CONFIG_FILENAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _mapping(value: object, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"{where} must be a mapping"
        raise ConfigurationError(msg)
    return value


def _check_keys(data: dict[str, Any], allowed: frozenset[str], where: str) -> None:
    unknown = sorted(str(k) for k in data if k not in allowed)
    if unknown:
        msg = f"{where}: unknown key(s) {unknown}, expected some of {sorted(allowed)}"
        raise ConfigurationError(msg)


def _thresholds(rule_id: str, raw: object) -> dict[str, int | float]:
    values: dict[str, int | float] = {}
    for name, value in _mapping(raw, f"rule '{rule_id}' thresholds").items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            msg = f"rule '{rule_id}': threshold '{name}' must be a number, got {value!r}"
            raise ConfigurationError(msg)
        if value < 0:
            msg = f"rule '{rule_id}': threshold '{name}' must be non-negative"
            raise ConfigurationError(msg)
        values[str(name)] = value
    return values


def _toggles(rule_id: str, raw: object) -> dict[str, bool]:
    values: dict[str, bool] = {}
    for name, value in _mapping(raw, f"rule '{rule_id}' toggles").items():
        if not isinstance(value, bool):
            msg = f"rule '{rule_id}': toggle '{name}' must be true or false, got {value!r}"
            raise ConfigurationError(msg)
        values[str(name)] = value
    return values


def _configure_rule(base: Rule, raw: object) -> Rule:
    # ``rule-id: false`` is shorthand for ``rule-id: {enabled: false}``.
    if isinstance(raw, bool):
        raw = {"enabled": raw}
    data = _mapping(raw, f"rule '{base.id}'")
    _check_keys(data, _RULE_KEYS, f"rule '{base.id}'")

    enabled = data.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        msg = f"rule '{base.id}': 'enabled' must be true or false"
        raise ConfigurationError(msg)
    if enabled is False and base.id == SCAN_ERROR_RULE_ID:
        msg = f"rule '{SCAN_ERROR_RULE_ID}' cannot be disabled"
        raise ConfigurationError(msg)

    severity: Severity | None = None
    if data.get("severity") is not None:
        try:
            severity = Severity.parse(data["severity"])
        except ValueError as exc:
            msg = f"rule '{base.id}': {exc}"
            raise ConfigurationError(msg) from exc

    try:
        return base.configured(
            enabled=enabled,
            severity=severity,
            thresholds=_thresholds(base.id, data.get("thresholds")),
            toggles=_toggles(base.id, data.get("toggles")),
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def _scan_settings(raw: object) -> ScanSettings:
    data = _mapping(raw, "'scan'")
    _check_keys(data, _SCAN_KEYS, "'scan'")

    exclude_raw = data.get("exclude") or []
    if not isinstance(exclude_raw, list) or not all(isinstance(g, str) for g in exclude_raw):
        msg = "'scan.exclude' must be a list of glob strings"
        raise ConfigurationError(msg)

    workers = data.get("workers")
    if workers is not None and (
        isinstance(workers, bool) or not isinstance(workers, int) or workers < 1
    ):
        msg = f"'scan.workers' must be a positive integer, got {workers!r}"
        raise ConfigurationError(msg)

    timeout = data.get("timeout")
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        msg = f"'scan.timeout' must be a positive number of seconds, got {timeout!r}"
        raise ConfigurationError(msg)

    cache = data.get("cache", True)
    if not isinstance(cache, bool):
        msg = "'scan.cache' must be true or false"
        raise ConfigurationError(msg)

    return ScanSettings(
        exclude=tuple(exclude_raw),
        workers=workers,
        timeout=float(timeout) if timeout is not None else None,
        cache=cache,
    )


def ruleset_from_mapping(data: object, *, source: str | None = None) -> RuleSet:
    """Validate a parsed rule-set document and apply it over the defaults.

    Unknown rule ids are logged and skipped. Anything else that does not
    validate raises :class:`ConfigurationError`.
    """
    where = source or "rule set"
    if not isinstance(data, dict):
        msg = f"{where}: must be a YAML mapping"
        raise ConfigurationError(msg)
    _check_keys(data, _TOP_LEVEL_KEYS, where)

    version = data.get("version")
    if version is None:
        msg = f"{where}: missing required 'version' field"
        raise ConfigurationError(msg)
    if version not in SUPPORTED_CONFIG_VERSIONS:
        expected = sorted(SUPPORTED_CONFIG_VERSIONS)
        msg = f"{where}: unsupported version {version}, expected one of {expected}"
        raise ConfigurationError(msg)

    name = data.get("name", "default")
    if not isinstance(name, str) or not name.strip():
        msg = f"{where}: 'name' must be a non-empty string"
        raise ConfigurationError(msg)

    overrides = _mapping(data.get("rules"), f"{where}: 'rules'")
    known = {r.id for r in registered_rules()}
    for rule_id in sorted(str(k) for k in overrides if k not in known):
        logger.warning("%s: ignoring unknown rule id '%s'", where, rule_id)

    rules = tuple(
        _configure_rule(base, overrides[base.id]) if base.id in overrides else base
        for base in registered_rules()
    )
    return RuleSet(
        name=name,
        rules=rules,
        settings=_scan_settings(data.get("scan")),
        source=source,
    )


def load_ruleset(path: Path) -> RuleSet:
    """Parse a rule-set YAML file.

    Raises :class:`ConfigurationError` if the file cannot be read, is not
    valid YAML, or does not validate.
    """
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        msg = f"cannot read rule set {path}: {exc.strerror or exc}"
        raise ConfigurationError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"{path}: invalid YAML ({exc})"
        raise ConfigurationError(msg) from exc
    ruleset = ruleset_from_mapping(data, source=str(path))
    logger.debug("Loaded rule set '%s' from %s", ruleset.name, path)
    return ruleset
