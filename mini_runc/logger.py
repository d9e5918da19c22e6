#!/usr/bin/env python3
"""
Diagnostic logging for Mini-Runc.

Everything Mini-Runc says about itself goes to stderr through the
"mini_runc" logger hierarchy. Stdout belongs to the container, so callers
can pipe a run into another program and only see the container's output.

Verbosity:
    0  warnings and errors
    1  progress (-v)
    2+ debug detail (-vv)
"""

import logging
import sys
from typing import Optional, TextIO

LOGGER_NAME = "mini_runc"
LOG_FORMAT = "%(name)s: %(levelname)s: %(message)s"


def verbosity_to_level(verbosity: int) -> int:
    """Map a -v count to a logging level."""
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(verbosity: int = 0, stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Install a single stderr handler on the package logger.

    Calling this again replaces the previous handler, so repeated CLI
    invocations in one process (tests) do not duplicate output.

    Args:
        verbosity: Number of -v flags given
        stream: Output stream (default: sys.stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_mini_runc", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._mini_runc = True
    logger.addHandler(handler)
    logger.setLevel(verbosity_to_level(verbosity))
    return logger
