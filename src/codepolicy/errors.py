"""Error taxonomy for the policy engine."""

# codepolicy:domain=engine

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codepolicy.engine.aggregator import ScanResult


class CodePolicyError(Exception):
    """Base class for all codepolicy errors."""


class UnsupportedLanguage(CodePolicyError):
    """Raised when no source adapter is registered for a file's language."""

    def __init__(self, language: str, path: str | None = None) -> None:
        self.language = language
        self.path = path
        where = f" ({path})" if path else ""
        super().__init__(f"Unsupported language '{language}'{where}")


class ParseFailure(CodePolicyError):
    """Raised when a file cannot be turned into a SourceUnit.

    Always carries the offending location so the scan-error finding can
    point at it.
    """

    def __init__(self, path: str, message: str, *, line: int = 1, column: int = 1) -> None:
        self.path = path
        self.line = line
        self.column = column
        self.reason = message
        super().__init__(f"{path}:{line}:{column}: {message}")


class ConfigurationError(CodePolicyError):
    """Raised when a rule-set file is invalid. Fatal: the scan does not start."""


class TimeoutExceeded(CodePolicyError):
    """Raised when a scan exceeds its deadline and the caller asked to be told.

    The partial result collected before the deadline is attached.
    """

    def __init__(self, timeout: float, partial: ScanResult) -> None:
        self.timeout = timeout
        self.partial = partial
        super().__init__(
            f"Scan exceeded {timeout:g}s; {partial.files_analyzed} file(s) analyzed before timeout"
        )
