"""Logging configuration using loguru with automatic dev/prod detection."""

import sys
from loguru import logger

from research_agent.config.settings import settings


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure loguru based on environment settings.

    Behavior:
    - Development (TTY + console format): Colorized, human-readable output
    - Production (non-TTY or json format): JSON-structured logs to stdout

    Args:
        level: Override for LOG_LEVEL
        log_format: Override for LOG_FORMAT ("console" or "json")
    """
    logger.remove()

    level = (level or settings.log_level).upper()
    use_console_format = (log_format or settings.log_format).lower() == "console"

    if sys.stderr.isatty() and use_console_format:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
                "<cyan>{extra[component]}</cyan> | <level>{message}</level>"
            ),
            level=level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stdout,
            format="{message}",
            level=level,
            serialize=True,
            diagnose=False,
        )

    # Records logged without bind() still need extra[component] for the console format
    logger.configure(extra={"component": "research_agent"})


def get_logger(component: str):
    """
    Get a logger instance bound to a specific component name.

    Args:
        component: Component/module name for log context

    Returns:
        Logger instance with component context

    Example:
        >>> log = get_logger("orchestration.executor")
        >>> log.info("Run started")
    """
    return logger.bind(component=component)


__all__ = ["logger", "get_logger", "configure_logging"]
