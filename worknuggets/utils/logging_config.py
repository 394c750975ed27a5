"""Structured logging configuration built on structlog.

Call :func:`setup_logging` once per process (CLI entry point, FastAPI
lifespan, scheduler). Modules keep using ``logging.getLogger(__name__)``;
their records are routed through structlog's ``ProcessorFormatter`` so the
output format is the same for stdlib and structlog loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_SECRET_KEYS = ("apikey", "api_key", "authorization", "token", "password", "secret")


def _redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in _SECRET_KEYS):
            event_dict[key] = "[REDACTED]"
    return event_dict


def setup_logging(
    level: str = "INFO",
    service_name: str = "worknuggets",
    log_format: str | None = None,
) -> None:
    """Configure stdlib logging and structlog.

    Safe to call more than once; the root handler is replaced each time.

    Args:
        level: Log level name (case-insensitive).
        service_name: Added to every record as ``service``.
        log_format: ``"json"`` or ``"console"``. Defaults to the
            ``LOG_FORMAT`` setting; DEBUG level always uses console output.
    """
    from worknuggets import config

    level_upper = (level or "INFO").upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    fmt = (log_format or config.LOG_FORMAT or "json").lower()
    use_console = fmt == "console" or level_upper == "DEBUG"

    def _add_service(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", service_name)
        return event_dict

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if use_console:
        renderer: Any = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
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
    root_logger.setLevel(numeric_level)

    # Selenium and urllib3 are chatty at INFO
    for noisy in ("selenium", "urllib3", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """Bind request-scoped values (request id, path, ...) to every record."""
    structlog.contextvars.bind_contextvars(**values)


def unbind_trace_context() -> None:
    """Clear request-scoped values bound by :func:`bind_request_context`."""
    structlog.contextvars.clear_contextvars()
