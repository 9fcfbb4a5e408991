"""Logging setup for the command line entry points."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.logging import RichHandler

from credfix.core.output import error_console

LOGGER_NAME = "credfix"


def setup_logging(level: str = "WARNING", verbose: bool = False, log_file: Path | None = None) -> logging.Logger:
    """Attach a rich stderr handler (and optionally a file handler) to the credfix logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    console_handler = RichHandler(
        console=error_console,
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
    )
    console_handler.setLevel(logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
