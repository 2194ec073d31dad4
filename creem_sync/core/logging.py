"""Structured logging for the webhook receiver.

structlog drives both our own loggers and the stdlib ones (uvicorn,
SQLAlchemy) through a single ProcessorFormatter, so every line is JSON in
production and colored console output in debug mode. Each entry carries the
request's correlation id, and webhook secrets or raw signatures never reach
the log stream.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

REDACTED_KEYS = frozenset({"secret", "signature", "creem_webhook_secret", "authorization"})


def add_correlation_id(logger, method, event_dict):
    """Inject correlation_id from asgi-correlation-id context into every log entry."""
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def redact_sensitive(logger, method, event_dict):
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog and route stdlib logging through it.

    Must run before other creem_sync modules create loggers, because
    structlog caches the processor chain on first use.

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: JSON lines when True, ConsoleRenderer when False
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
            "aiosqlite": {"level": "WARNING"},
        },
    })

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
