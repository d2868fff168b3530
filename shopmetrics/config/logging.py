"""
Logging Configuration for the Shop Metrics Engine

Structured logging through structlog on top of the stdlib logging tree.
Every record carries the service name and environment; request and
webhook ids bound by the API middleware are merged in from contextvars.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from shopmetrics.config.settings import Settings, get_settings

# Loggers that are routed through our handler instead of their own
ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "gunicorn.error")


def service_context(settings: Settings):
    """Processor stamping service name and environment onto each event."""
    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("env", settings.app_env)
        return event_dict

    return add_service_context


def library_levels(settings: Settings, numeric_level: int) -> Dict[str, int]:
    """Levels for chatty third-party loggers."""
    quiet = max(numeric_level, logging.WARNING)
    return {
        # one INFO line per upstream request
        "httpx": quiet,
        "httpcore": quiet,
        "aiosqlite": quiet,
        "sqlalchemy.engine": logging.INFO if settings.database.echo else quiet,
    }


def shared_processors(settings: Settings) -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        service_context(settings),
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override renderer ("json" or "text")
    """
    settings = get_settings()
    level = log_level or settings.monitoring.log_level
    fmt = log_format or settings.monitoring.log_format
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    processors = shared_processors(settings)
    structlog.configure(
        processors=processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # JSON for log shipping, colored console locally
    renderer = JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer(colors=True)
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(ProcessorFormatter(processor=renderer, foreign_pre_chain=processors))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = [handler]

    for name in ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers = [handler]
        routed.propagate = False
        routed.setLevel(numeric_level)

    for name, library_level in library_levels(settings, numeric_level).items():
        logging.getLogger(name).setLevel(library_level)

    structlog.get_logger(__name__).info("Logging configured", level=level, format=fmt)
