"""Metric Extractor."""

# codepolicy:domain=metrics

from codepolicy.metrics.extractor import (
    CallableMetrics,
    FileMetrics,
    UnitMetrics,
    extract_metrics,
    import_aliases,
    is_mixed_concern,
    module_name,
    resolve_target,
)

__all__ = [
    "CallableMetrics",
    "FileMetrics",
    "UnitMetrics",
    "extract_metrics",
    "import_aliases",
    "is_mixed_concern",
    "module_name",
    "resolve_target",
]
