"""Logging setup for the command line: a rich handler on stderr."""

# codepolicy:domain=cli

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Configure logging for a CLI run and return the ``codepolicy`` logger.

    ``--quiet`` keeps errors only, ``--verbose`` enables DEBUG; otherwise
    warnings and above are shown. Log output always goes to stderr so it never
    mixes with machine-readable reports on stdout.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
        show_time=verbose,
        show_path=verbose,
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler])

    logger = logging.getLogger("codepolicy")
    logger.setLevel(level)
    return logger
