"""Structured logging configuration using structlog."""

import logging
import sys

import structlog

# uvicorn loggers routed through the root handler; access logs come from
# RequestLoggingMiddleware instead.
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error")


def configure_logging(debug: bool = False) -> None:
    """Emit one JSON object per log event on stdout.

    Context bound through structlog.contextvars (the request id, for
    instance) is merged into every event.

    Args:
        debug: Log per-event synchronizer and search details when True.
    """
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stdout)
    for name in _UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True
    logging.getLogger("uvicorn.access").disabled = True
