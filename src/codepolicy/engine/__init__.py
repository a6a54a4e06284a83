"""Evaluator, Finding Aggregator and the SourceUnit cache."""

# codepolicy:domain=engine

from codepolicy.engine.aggregator import (
    EXIT_ERROR,
    EXIT_FINDINGS,
    EXIT_OK,
    EXIT_TIMEOUT,
    ScanResult,
    aggregate,
)
from codepolicy.engine.cache import MemoryCache, SqliteCache, UnitCache, open_cache
from codepolicy.engine.evaluator import (
    DEFAULT_WORKERS,
    SKIP_DIRS,
    FileOutcome,
    analyze_file,
    discover_files,
    evaluate_file,
    evaluate_index,
    scan,
    scan_units,
)

__all__ = [
    "DEFAULT_WORKERS",
    "EXIT_ERROR",
    "EXIT_FINDINGS",
    "EXIT_OK",
    "EXIT_TIMEOUT",
    "SKIP_DIRS",
    "FileOutcome",
    "MemoryCache",
    "ScanResult",
    "SqliteCache",
    "UnitCache",
    "aggregate",
    "analyze_file",
    "discover_files",
    "evaluate_file",
    "evaluate_index",
    "open_cache",
    "scan",
    "scan_units",
]
