from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

EventDict = Dict[str, Any]

# Per-request correlation ID, echoed back in the X-Request-ID header
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Keys whose string values never reach the log output unmasked
_PII_KEYS = frozenset(
    {"password", "secret", "token", "authorization", "email", "code", "nickname"}
)
# Token metadata that is safe to log as-is
_SAFE_KEYS = frozenset({"token_type", "error_code", "status_code"})

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current context and return it."""
    bound = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(bound)
    return bound


def _add_correlation_id(_logger: Any, _method: str, event: EventDict) -> EventDict:
    request_id = correlation_id_var.get()
    if request_id:
        event["correlation_id"] = request_id
    return event


def _mask(value: str) -> str:
    # Keep first/last 2 chars for debugging
    return f"{value[:2]}***{value[-2:]}" if len(value) > 4 else value


def _redact_pii(_logger: Any, _method: str, event: EventDict) -> EventDict:
    """Mask credential and personal values before rendering."""
    for key, value in event.items():
        name = key.lower()
        if name in _SAFE_KEYS or not isinstance(value, str):
            continue
        if any(marker in name for marker in _PII_KEYS):
            event[key] = _mask(value)
    return event


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Install the structlog pipeline.

    JSON lines in production; a coloured console renderer when
    ``development_mode`` is set or JSON output is turned off.
    """
    if development_mode or not json_output:
        renderers: list = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    level = logging.getLevelName(log_level.upper())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_correlation_id,
            _redact_pii,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            level if isinstance(level, int) else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_configure_structlog(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY,
    development_mode=os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
