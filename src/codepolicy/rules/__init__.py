"""Rules, the rule registry and Rule Set configuration."""

# codepolicy:domain=rules

from codepolicy.rules.base import (
    SCAN_ERROR_RULE_ID,
    Finding,
    Rule,
    RuleContext,
    Severity,
    registered_rules,
    rule,
)
from codepolicy.rules.ruleset import (
    RuleSet,
    ScanSettings,
    default_ruleset,
    find_config,
    load_ruleset,
    ruleset_from_mapping,
)

__all__ = [
    "SCAN_ERROR_RULE_ID",
    "Finding",
    "Rule",
    "RuleContext",
    "RuleSet",
    "ScanSettings",
    "Severity",
    "default_ruleset",
    "find_config",
    "load_ruleset",
    "registered_rules",
    "rule",
    "ruleset_from_mapping",
]
