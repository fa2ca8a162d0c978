"""Package logging setup: rich console output plus an optional plain-text file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

PKG = "src.esbulk"


def setup_logging(verbose: bool = False, log_file: Optional[str | Path] = None) -> logging.Logger:
    """Attach handlers to the package logger and return it.

    The console handler is added once; a file handler is added per call
    that passes ``log_file``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(PKG)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        console = RichHandler(
            rich_tracebacks=True,
            show_path=False,
            markup=False,
            log_time_format="[%H:%M:%S]",
        )
        logger.addHandler(console)

    for handler in logger.handlers:
        handler.setLevel(level)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s  %(name)s  %(levelname)s  %(message)s"))
        fh.setLevel(level)
        logger.addHandler(fh)

    return logger


__all__ = ["PKG", "setup_logging"]
