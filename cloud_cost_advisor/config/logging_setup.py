"""
Logging setup.

Configures structlog once for the command line entry point. Library code
only calls ``structlog.get_logger(__name__)``.
"""

import logging
import sys

import structlog


def configure_logging(level: str = "WARNING", json_output: bool = False) -> None:
    """Configure structlog to write key/value or JSON lines to stderr.

    Args:
        level: Minimum level name, e.g. "INFO"
        json_output: Render JSON instead of the console format
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
