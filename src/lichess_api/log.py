from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Route `lichess_api` loggers to stderr through rich.

    INFO by default; DEBUG (with rich tracebacks) when `verbose` is set.
    """

    logger = logging.getLogger("lichess_api")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)

    logger.debug("verbose logging enabled")
    return logger
