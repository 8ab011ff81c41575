"""Structured logging shared by the collector and the API server."""

import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Protocol
import structlog
from structlog.stdlib import LoggerFactory

# Client libraries that log every request or frame at INFO/DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "redis")


class LogSettings(Protocol):
    log_level: str
    log_format: str
    log_file: Optional[str]
    log_max_size_mb: int
    log_backup_count: int


def _file_handler(settings: LogSettings, level: int) -> logging.Handler:
    log_path = Path(settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=settings.log_max_size_mb * 1024 * 1024,
        backupCount=settings.log_backup_count,
    )
    handler.setLevel(level)
    return handler


def setup_logging(settings: LogSettings, service: Optional[str] = None) -> None:
    """
    Configure structlog on top of the standard library.

    Works with both ``CollectorConfig`` and ``APISettings``. When ``service``
    is given it is bound into every event through contextvars so collector
    and API output can be told apart in a shared sink.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if service:
        structlog.contextvars.bind_contextvars(service=service)

    if settings.log_file:
        logging.getLogger().addHandler(_file_handler(settings, level))
