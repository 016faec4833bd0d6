"""Structured logging configuration using structlog.

JSON output in production, colored console output in development. Request
handlers bind ``request_id`` and ``actor_id`` into the context so that every
entry written while a step is advanced or an automation rule fires can be
correlated back to the inbound call.

Usage:
    from transaction_engine.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.info("step.advanced", transaction_id=42, to_order=5)
"""

from __future__ import annotations

import logging
import sys

import structlog

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio")


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog on top of the standard library root logger.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, render JSON lines. If False, colored console.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for noisy_logger in _QUIET_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def bind_request_context(request_id: str, actor_id: int | None = None) -> None:
    """Reset the contextvars and bind the identifiers of the current request."""
    structlog.contextvars.clear_contextvars()
    if actor_id is None:
        structlog.contextvars.bind_contextvars(request_id=request_id)
    else:
        structlog.contextvars.bind_contextvars(request_id=request_id, actor_id=actor_id)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Optional logger name. If None, uses the calling module's name.
    """
    return structlog.get_logger(name)
