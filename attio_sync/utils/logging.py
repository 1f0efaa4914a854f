"""
Logging for Attio Sync.

The library only emits structlog events. setup_logging() is for host
processes (workers, scripts) that have no logging configuration of their own.
"""

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import Processor

QUIET_LOGGERS = ("urllib3", "requests", "apscheduler")


def get_log_level() -> str:
    """Get log level from environment."""
    return (os.getenv("ATTIO_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO").upper()


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Route structlog and standard library logging through one stdout handler.

    Args:
        level: Log level name, ATTIO_LOG_LEVEL or LOG_LEVEL by default
        json_logs: Render JSON lines instead of console output,
            ATTIO_LOG_JSON by default
    """
    if json_logs is None:
        json_logs = os.getenv("ATTIO_LOG_JSON", "false").lower() in ("1", "true", "yes")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if json_logs:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel((level or get_log_level()).upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def sync_context(**values: Any) -> Iterator[None]:
    """
    Bind values to every event logged inside the block, including events
    from the executor and API client called within it.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield
