"""Logging setup for the CLI and pipeline stages."""

from __future__ import annotations

import logging
from pathlib import Path

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "macpack.log"


def level_from_flags(verbose: bool = False, quiet: bool = False) -> int:
    """Map CLI verbosity switches to a logging level."""

    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    return logging.INFO


def configure_logging(log_file: Path | None, level: int = logging.INFO) -> logging.Logger:
    """Configure process-wide console logging, plus a file log when given a path.

    The file handler always records INFO and above so a failed packaging run
    can be diagnosed even when the console was quiet.
    """

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, logging.INFO) if log_file is not None else level)

    formatter = logging.Formatter(fmt=DEFAULT_LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(level)
    root_logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(min(level, logging.INFO))
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("macpack")
    logger.setLevel(root_logger.level)
    return logger
