"""Logging for applications that embed the parser.

Library modules only call ``logging.getLogger(__name__)``. An application
calls :func:`setup_logging` once, usually with its loaded
:class:`~loadspec.config.ParserSettings`, to send the ``loadspec`` logger
tree to a Rich console on *stderr* and optionally to a plain-text file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from loadspec.config import ParserSettings

ROOT_LOGGER = "loadspec"
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# These log every HTTP exchange at INFO.
_CHATTY_DEPENDENCIES = ("httpx", "httpcore", "LiteLLM")


def resolve_level(name: str) -> int:
    """Map a level name such as ``"debug"`` to its number; unknown names give INFO."""
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _console_handler(console: Console | None) -> RichHandler:
    return RichHandler(
        console=console or Console(stderr=True),
        show_time=True,
        show_path=False,
        markup=False,
    )


def _file_handler(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
    return handler


def setup_logging(
    settings: Optional[ParserSettings] = None,
    *,
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    console: Console | None = None,
) -> logging.Logger:
    """Install handlers on the ``loadspec`` logger and return it.

    Parameters
    ----------
    settings:
        Supplies ``log_level`` and ``log_file``. Defaults apply when omitted.
    level, log_file:
        Explicit values that win over *settings*.
    console:
        Rich console for the console handler; *stderr* by default.

    Calling it again replaces the handlers from the previous call.
    """
    settings = settings or ParserSettings()
    numeric_level = resolve_level(level or settings.log_level)
    path = log_file or settings.log_file

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(numeric_level)

    handlers: list[logging.Handler] = [_console_handler(console)]
    if path is not None:
        handlers.append(_file_handler(path))
    for handler in handlers:
        handler.setLevel(numeric_level)
        logger.addHandler(handler)

    if numeric_level > logging.DEBUG:
        for name in _CHATTY_DEPENDENCIES:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logger
