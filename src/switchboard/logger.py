"""
Structured Logging

Thin wrapper around structlog so every module logs key/value events the
same way.

Example:
    from switchboard.logger import get_logger

    logger = get_logger(__name__)
    logger.info("hop_executed", handler_id="docs", elapsed_ms=12.5)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_handler: logging.Handler | None = None


def _text_renderer(logger: Any, name: str, event_dict: dict[str, Any]) -> str:
    message = event_dict.pop("event", "")
    level = event_dict.pop("level", "info")
    logger_name = event_dict.pop("logger", "")
    timestamp = event_dict.pop("timestamp", "")
    extra = " | ".join(f"{k}={v}" for k, v in event_dict.items())
    line = f"{timestamp} | {logger_name} | {level.upper()} | {message}"
    return f"{line} | {extra}" if extra else line


def configure_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """
    Configure structlog on top of the standard logging module.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: 'json' or 'text'
    """
    global _handler

    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    elif log_format == "text":
        renderer = _text_renderer
    else:
        raise ValueError(f"log_format must be 'json' or 'text', got {log_format!r}")

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Rebind to the current stderr on every call; it may have been swapped.
    root_logger = logging.getLogger("switchboard")
    if _handler is not None:
        root_logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(_handler)
    root_logger.propagate = False
    root_logger.setLevel(log_level.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to `name` (usually __name__)."""
    return structlog.get_logger(name)
