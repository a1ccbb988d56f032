#!/usr/bin/env python3
"""Operator-facing output helpers and logging setup."""

from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("pgdeploy")

# Color codes for output
BLUE = '\033[94m'
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
RESET = '\033[0m'


def color_enabled() -> bool:
    """Return True when ANSI colors should be written to stdout."""
    if os.environ.get('NO_COLOR'):
        return False
    isatty = getattr(sys.stdout, 'isatty', None)
    return bool(isatty and isatty())


def _tag(label: str, color: str) -> str:
    if color_enabled():
        return f"{color}[{label}]{RESET}"
    return f"[{label}]"


def _emit(label: str, color: str, msg: str, context: dict) -> None:
    print(f"{_tag(label, color)} {msg}", flush=True)
    for key, value in context.items():
        print(f"  {key}: {value}", flush=True)


def info(msg, **context):
    """Print an info line with optional key/value context."""
    _emit('INFO', BLUE, msg, context)


def success(msg, **context):
    _emit('SUCCESS', GREEN, msg, context)


def warn(msg, **context):
    _emit('WARN', YELLOW, msg, context)


def error_line(msg, **context):
    """Print an error line. Unlike sys.exit based helpers this never exits."""
    _emit('ERROR', RED, msg, context)


def heading(title: str) -> None:
    print(title, flush=True)
    print("=" * len(title), flush=True)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True  # Reconfigure if already configured
    )
    logger.setLevel(level)
    logger.debug(f"Logging configured: {logging.getLevelName(level)}")
