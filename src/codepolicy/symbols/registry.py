"""Source adapter registry: language detection and ``parse_file`` dispatch."""

# codepolicy:domain=symbols

from __future__ import annotations

from typing import TYPE_CHECKING

from codepolicy.errors import ParseFailure, UnsupportedLanguage
from codepolicy.symbols.python_parser import parse_python

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from codepolicy.symbols.model import SourceUnit

    Adapter = Callable[[str, bytes], SourceUnit]

# Language -> adapter turning (display path, raw bytes) into a SourceUnit.
_ADAPTERS: dict[str, Adapter] = {
    "python": parse_python,
}

# Extension -> language.
_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
}


def register_adapter(language: str, extensions: Iterable[str], adapter: Adapter) -> None:
    """Register (or replace) the adapter for *language* and its file extensions."""
    _ADAPTERS[language] = adapter
    for ext in extensions:
        _EXTENSIONS[ext] = language


def detect_language(path: Path) -> str | None:
    """Return the language registered for *path*'s extension, or ``None``."""
    return _EXTENSIONS.get(path.suffix)


def supported_extensions() -> frozenset[str]:
    """Return the set of file extensions that have an adapter."""
    return frozenset(ext for ext, lang in _EXTENSIONS.items() if lang in _ADAPTERS)


def parse_source(display: str, content: bytes, language: str) -> SourceUnit:
    """Parse already-read *content* with the adapter registered for *language*.

    Raises :class:`UnsupportedLanguage` when no adapter is registered.
    """
    adapter = _ADAPTERS.get(language)
    if adapter is None:
        raise UnsupportedLanguage(language, display)
    return adapter(display, content)


def parse_file(
    path: Path,
    language_hint: str | None = None,
    *,
    root: Path | None = None,
) -> SourceUnit:
    """Parse *path* into a SourceUnit.

    The unit's ``path`` is relative to *root* (posix separators) when given.

    Raises
    ------
    UnsupportedLanguage
        No adapter for the hinted or detected language.
    ParseFailure
        The file cannot be read or does not parse.
    """
    display = path.relative_to(root).as_posix() if root is not None else path.as_posix()
    language = language_hint or detect_language(path)
    if language is None:
        raise UnsupportedLanguage(path.suffix or "unknown", display)
    if language not in _ADAPTERS:
        raise UnsupportedLanguage(language, display)

    try:
        content = path.read_bytes()
    except OSError as exc:
        msg = f"cannot read file ({exc.strerror or exc})"
        raise ParseFailure(display, msg) from exc

    return parse_source(display, content, language)
