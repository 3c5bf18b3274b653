from __future__ import annotations

import logging
import sys
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(
    level: str = "WARNING",
    format_string: str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Configure root logging for the scheduler process.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        format_string: log line format; ``DEFAULT_FORMAT`` when omitted.
        log_file: optional file that receives the same records as stdout.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
