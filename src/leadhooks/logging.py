"""Structured logging for Leadhooks.

Every component logs through structlog. Delivery code binds ``webhook_id``
and ``payload_id`` into the context so each line from a dispatch can be
correlated without threading identifiers through every call.

Endpoint secrets and request signatures never reach the output:
``redact_secrets`` masks them before rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor, WrappedLogger

    from leadhooks.config import Settings

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"secret", "signature", "authorization", "x-webhook-signature"})

# Libraries that log every request or statement at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")

_configured = False


def redact_secrets(
    logger: WrappedLogger, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask sensitive values, including inside a logged ``headers`` mapping."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED

    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SENSITIVE_KEYS else value
            for name, value in headers.items()
        }
    return event_dict


def _quiet_libraries(log_level: int) -> None:
    level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def configure_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        format: "json" for one JSON object per line, anything else for the
            colored console renderer.
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger().setLevel(log_level)
    _quiet_libraries(log_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if format.lower() == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured = True


def configure_from_settings(settings: Settings) -> None:
    """Apply ``log_level`` and ``log_format`` from settings."""
    configure_logging(level=settings.log_level, format=settings.log_format)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a logger, applying the default configuration on first use."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Attach key/value pairs to every log line in the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
