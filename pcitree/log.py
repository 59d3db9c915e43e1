#
# Python pcitree library
# Logging setup
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog

from .exceptions import ConfigurationError

LOG_LEVEL_ENV = "PCITREE_LOG_LEVEL"
DEFAULT_LEVEL = "WARNING"


def resolve_level(level: Optional[str] = None) -> int:
    name = (level or os.getenv(LOG_LEVEL_ENV) or DEFAULT_LEVEL).upper()
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ConfigurationError(f"Unknown log level: {name}")
    return value


def setup_logging(level: Optional[str] = None, json_output: bool = False) -> None:
    """Route structlog events to stderr, dropping anything below `level`.

    stdout carries the listing/tree output, so diagnostics never go there.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger(name)
