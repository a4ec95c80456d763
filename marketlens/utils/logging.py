"""
Structured logging configuration using structlog.

Every logger is bound to the module that created it and to one of the
log areas below, so cache, upstream and API events can be filtered apart
in the JSON output.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, Processor

# Module prefix -> area, first match wins
LOG_AREAS = (
    ("marketlens.cache", "cache"),
    ("marketlens.entities", "cache"),
    ("marketlens.providers", "upstream"),
    ("marketlens.services", "data"),
    ("marketlens.api", "api"),
)

# Chatty at INFO (one line per upstream request / pool event)
QUIET_LIBRARIES = ("httpx", "httpcore", "redis")

SENSITIVE_KEYS = {"authorization", "api_key", "x-api-key", "secret", "cron_secret", "internal_api_secret"}


def log_area(name: Optional[str]) -> str:
    """Area a module's events are reported under (``"app"`` when unlisted)."""
    for prefix, area in LOG_AREAS:
        if name and (name == prefix or name.startswith(prefix + ".")):
            return area
    return "app"


def redact_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credentials passed as log fields."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "auto") -> None:
    """Configure structured logging for the application.

    ``log_format`` is ``"console"``, ``"json"`` or ``"auto"`` (console on a
    TTY, JSON otherwise).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Standard library logging (uvicorn, httpx) goes to the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    if level > logging.DEBUG:
        for name in QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_sensitive,
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    console = sys.stderr.isatty() if log_format == "auto" else log_format == "console"
    if console:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger bound to ``name`` and its log area."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(module=name, area=log_area(name))
    return logger


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Context manager to add context to all log messages in scope."""
    return structlog.contextvars.bound_contextvars(**kwargs)
