"""Structured logging utilities using structlog for run context and tracing."""

import os
import sys
import uuid
from typing import Any, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.processors import JSONRenderer


def configure_structured_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure structlog processors and renderer.

    Uses:
    - Console renderer for development (colorized, human-readable)
    - JSON renderer for production (structured, machine-readable)
    - Context variables for run_id propagation across components

    Args:
        level: Log level name, defaults to LOG_LEVEL env var
        log_format: "console" or "json", defaults to LOG_FORMAT env var
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = (log_format or os.getenv("LOG_FORMAT", "console")).lower()

    processors = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if sys.stderr.isatty() and log_format == "console":
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def new_run_id() -> str:
    """Generate an identifier for one research run."""
    return f"run-{uuid.uuid4().hex[:12]}"


def bind_run_context(run_id: str, **extra: Any) -> None:
    """
    Bind run-scoped context so every structlog event carries it.

    Args:
        run_id: Research run identifier
        **extra: Additional context (e.g. query)
    """
    clear_contextvars()
    bind_contextvars(run_id=run_id, **extra)


__all__ = [
    "configure_structured_logging",
    "new_run_id",
    "bind_run_context",
]
