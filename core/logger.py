"""
BILDIT Pixel Logging Module

Centralized structured logging system.
Supports JSON and text formatting, file rotation, and console output.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

_configured = False

UA_PREVIEW_LENGTH = 100


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = (
        datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
    )
    return event_dict


def add_service_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service context if available."""
    if "service" not in event_dict:
        event_dict["service"] = "bildit-pixel"
    return event_dict


def censor_sensitive_data(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Remove or mask sensitive data from logs."""
    sensitive_keys = {"password", "secret", "token", "api_key", "credential", "cookie", "authorization"}
    for key in list(event_dict.keys()):
        if any(s in key.lower() for s in sensitive_keys):
            event_dict[key] = "***REDACTED***"
    return event_dict


def preview_user_agent(user_agent: Optional[str]) -> str:
    """Shorten a user agent for diagnostics."""
    if not user_agent:
        return "none"
    if len(user_agent) <= UA_PREVIEW_LENGTH:
        return user_agent
    return user_agent[:UA_PREVIEW_LENGTH] + "..."


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5,
    console_output: bool = True,
) -> None:
    """
    Set up the logging system.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ('json' or 'text')
        log_file: Path to log file (optional)
        max_size_mb: Maximum log file size in MB before rotation
        backup_count: Number of backup files to keep
        console_output: Whether to output to the console (stderr)
    """
    global _configured
    if _configured:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_service_context,
        censor_sensitive_data,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    # Diagnostics go to stderr
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _configured = True


def get_logger(name: Optional[str] = None, **context: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context to bind to the logger

    Returns:
        A configured structlog logger
    """
    if not _configured:
        setup_logging()

    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


class DispatchLogger:
    """
    Verbose diagnostics for the server beacon dispatcher.

    Every method is a no-op unless the logger was created enabled, so
    diagnostics never change what the dispatcher does.
    """

    def __init__(self, enabled: bool, name: str = "bildit.dispatcher"):
        self._enabled = enabled
        self._logger = get_logger(name, component="dispatcher") if enabled else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def detection(
        self,
        user_agent: Optional[str],
        referer: Optional[str],
        bot: Optional[str],
        **kw: Any,
    ) -> None:
        """Log the outcome of bot detection."""
        if self._logger:
            self._logger.info(
                "bot_detection",
                user_agent=preview_user_agent(user_agent),
                referer=referer or "none",
                bot=bot or "none",
                **kw,
            )

    def skipped(self, reason: str, **kw: Any) -> None:
        """Log a skipped dispatch."""
        if self._logger:
            self._logger.info("pixel_request_skipped", reason=reason, **kw)

    def request(self, url: str, **kw: Any) -> None:
        """Log an outgoing pixel request."""
        if self._logger:
            self._logger.info("pixel_request", url=url, **kw)

    def success(self, url: str, status: int, ok: bool, **kw: Any) -> None:
        """Log a completed pixel request."""
        if self._logger:
            self._logger.info("pixel_request_succeeded", url=url, status=status, ok=ok, **kw)

    def failure(self, url: str, error: str, **kw: Any) -> None:
        """Log a failed pixel request."""
        if self._logger:
            self._logger.error("pixel_request_failed", url=url, error=error, **kw)
