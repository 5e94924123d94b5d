#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Core utility functions for the project.

This module provides helper functions for:
- Logging setup (console plus the orchestrator log file).
- Per-stage log files attached for the duration of a stage.
"""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from startup.config_models import SYMBOLS_DEFAULT

module_logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER = "{log_prefix}%(asctime)s - %(levelname)s - %(symbol)s %(name)s - %(message)s"
SIMPLE_LOG_FORMAT_NO_PREFIX = (
    "%(asctime)s - %(levelname)s - %(symbol)s %(name)s - %(message)s"
)

LOG_LEVELS: Dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class SymbolFormatter(logging.Formatter):
    """
    A custom formatter that adds symbols to log messages based on the log level.
    """

    def __init__(
        self, fmt=None, datefmt=None, style="%", validate=True, symbols=None
    ):
        super().__init__(fmt, datefmt, style, validate)
        self.symbols = symbols or SYMBOLS_DEFAULT

    def format(self, record):
        if record.levelno == logging.DEBUG:
            record.symbol = self.symbols.get("debug", "🐛")
        elif record.levelno == logging.INFO:
            record.symbol = self.symbols.get("info", "ℹ️")
        elif record.levelno == logging.WARNING:
            record.symbol = self.symbols.get("warning", "⚠️")
        elif record.levelno == logging.ERROR:
            record.symbol = self.symbols.get("error", "❌")
        elif record.levelno == logging.CRITICAL:
            record.symbol = self.symbols.get("critical", "🔥")
        else:
            record.symbol = ""

        return super().format(record)


def log_level_from_name(level_name: str) -> int:
    """Map DEBUG/INFO/WARNING/ERROR to a logging level, defaulting to INFO."""
    return LOG_LEVELS.get(str(level_name).upper(), logging.INFO)


def build_formatter(
    log_prefix: Optional[str] = None,
    symbols: Optional[Dict[str, str]] = None,
) -> SymbolFormatter:
    actual_prefix = (
        (log_prefix.strip() + " ")
        if log_prefix and log_prefix.strip()
        else ""
    )
    if actual_prefix:
        final_format_str = SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER.format(
            log_prefix=actual_prefix
        )
    else:
        final_format_str = SIMPLE_LOG_FORMAT_NO_PREFIX
    return SymbolFormatter(
        fmt=final_format_str, datefmt=DATE_FORMAT, symbols=symbols
    )


def setup_logging(
    log_level: int = logging.INFO,
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    log_prefix: Optional[str] = None,
    symbols: Optional[Dict[str, str]] = None,
) -> None:
    """
    Configures the root logger for a run.

    Records at or above `log_level` go to stdout and, when `log_file` is
    given, are appended to that file. Existing root handlers are replaced,
    so calling this twice does not duplicate output.

    Parameters:
    log_level: int
        Severity threshold applied to every handler.
    log_file: Optional[str]
        File the run's records are appended to. Its directory is created.
    log_to_console: bool
        Whether to log to the console (stdout).
    log_prefix: Optional[str]
        Prefix placed in front of every line.
    symbols: Optional[Dict[str, str]]
        Level symbols for the SymbolFormatter.
    """
    handlers: List[logging.Handler] = []
    if log_file:
        try:
            log_file_path = Path(log_file)
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file_path, mode="a"))
        except OSError as e:
            print(
                f"Warning: Could not create file handler for log file {log_file}: {e}",
                file=sys.stderr,
            )

    if log_to_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if not handlers:  # pragma: no cover
        handlers.append(logging.StreamHandler(sys.stdout))

    formatter = build_formatter(log_prefix, symbols)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    for handler in handlers:
        root_logger.addHandler(handler)

    module_logger.debug(
        f"Logging configured. Level: {logging.getLevelName(log_level)}. File: {log_file or '-'}"
    )


@contextmanager
def stage_log_file(
    log_dir: str,
    stage_name: str,
    log_level: int = logging.INFO,
    log_prefix: Optional[str] = None,
    symbols: Optional[Dict[str, str]] = None,
) -> Iterator[Optional[Path]]:
    """
    Attach `<log_dir>/<stage_name>.log` to the root logger while the block runs.

    Everything logged during the stage (by the runner, the action and the
    command helpers) lands in the stage's own file as well as in the run
    log. Yields the file path, or None when the file cannot be opened; the
    stage still runs in that case.
    """
    log_path = Path(log_dir) / f"{stage_name}.log"
    handler: Optional[logging.FileHandler] = None
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="a")
    except OSError as e:
        module_logger.warning(
            f"Could not open stage log file {log_path}: {e}"
        )

    root_logger = logging.getLogger()
    if handler is not None:
        handler.setLevel(log_level)
        handler.setFormatter(build_formatter(log_prefix, symbols))
        root_logger.addHandler(handler)
    try:
        yield log_path if handler is not None else None
    finally:
        if handler is not None:
            root_logger.removeHandler(handler)
            handler.close()
