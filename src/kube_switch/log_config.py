"""structlog configuration for the resolver and its stores."""

from __future__ import annotations

import logging
import os
import sys

import structlog


def configure_logging(debug: bool = False) -> None:
    """Configure structlog to write to stderr.

    Console output on a terminal, JSON otherwise. Debug events are dropped
    unless ``debug`` is set or ``KUBESWITCH_DEBUG`` is non-empty.
    """
    level = logging.DEBUG if debug or os.environ.get("KUBESWITCH_DEBUG") else logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
