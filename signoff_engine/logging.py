"""Logging utilities for structured output."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for JSON logs."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def log_events(logger: Any, events: Iterable[dict[str, Any]], **context: Any) -> None:
    """Emit engine events (``{"event": name, **fields}``) through ``logger``."""
    for ev in events:
        fields = dict(ev)
        name = str(fields.pop("event", "engine_event"))
        logger.info(name, **{**context, **fields})
