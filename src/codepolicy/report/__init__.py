"""Report adapters."""

# codepolicy:domain=report

from codepolicy.report.formatters import (
    FORMATS,
    format_json,
    format_porcelain,
    format_rich,
    format_text,
    render,
)

__all__ = [
    "FORMATS",
    "format_json",
    "format_porcelain",
    "format_rich",
    "format_text",
    "render",
]
