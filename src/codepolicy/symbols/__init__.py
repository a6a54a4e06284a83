"""Symbol Model and source adapters."""

# codepolicy:domain=symbols

from codepolicy.symbols.model import (
    Callable,
    CallSite,
    DependencyEdge,
    ErrorHandler,
    LiteralToken,
    LoopMarker,
    SourceUnit,
    infer_domain,
    unit_from_dict,
)
from codepolicy.symbols.python_parser import parse_annotations, parse_python
from codepolicy.symbols.registry import (
    detect_language,
    parse_file,
    parse_source,
    register_adapter,
    supported_extensions,
)

__all__ = [
    "CallSite",
    "Callable",
    "DependencyEdge",
    "ErrorHandler",
    "LiteralToken",
    "LoopMarker",
    "SourceUnit",
    "detect_language",
    "infer_domain",
    "parse_annotations",
    "parse_file",
    "parse_python",
    "parse_source",
    "register_adapter",
    "supported_extensions",
    "unit_from_dict",
]
