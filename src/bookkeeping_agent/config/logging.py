"""Structured logging configuration for the bookkeeping agent."""

import logging
import sys
from typing import Any, Literal

import structlog

from bookkeeping_agent.config.settings import get_settings

# Event keys whose values never reach the log output
SECRET_KEYS = frozenset({"api_key", "authorization", "password", "token", "secret"})
REDACTED = "***"

# Chatty libraries kept at WARNING unless DEBUG is requested
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "anthropic", "openai")


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credentials passed as log fields, including inside header dicts."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if isinstance(k, str) and k.lower() in SECRET_KEYS else v
                for k, v in value.items()
            }
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    service: str = "bookkeeping-agent",
) -> None:
    """Configure structured logging for one process.

    Every event carries the ``service`` name and the configured LLM provider;
    per-turn fields (user, session) are added by the chat service through
    structlog's context variables.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to settings.
        format: Output format (json or console). Defaults to settings.
        service: Process name, e.g. ``chat-api`` or ``cleanup-worker``.
    """
    settings = get_settings()
    log_level = level or settings.log_level
    log_format = format or settings.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )
    if log_level != "DEBUG":
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service, llm_provider=settings.llm_provider)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance bound to the given name."""
    return structlog.get_logger(name)
