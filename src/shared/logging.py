"""structlog configuration shared by the CLI and batch jobs."""

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json: bool = True) -> None:
    """Configure structlog output to stderr and align the stdlib log level.

    Context bound with ``structlog.contextvars`` (tenant_id, job) is merged
    into every event.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, stream=sys.stderr, format="%(message)s")
    # SQLAlchemy engine logging is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
