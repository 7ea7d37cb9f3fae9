"""Logging configuration for the OpenClaw panel updater."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from openclaw_panel.config import get_settings


def setup_logging() -> None:
    """Configure structured logging.

    Log lines go to stderr (stdout is reserved for command results) and,
    when ``log_to_file`` is set, to a rotating JSON file as well.
    """
    settings = get_settings()

    # Set log level
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    # Configure structlog to hand events to the stdlib handlers below
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=(
                structlog.dev.ConsoleRenderer(colors=True)
                if settings.is_development
                else structlog.processors.JSONRenderer()
            ),
            foreign_pre_chain=shared_processors,
        )
    )
    handlers: list[logging.Handler] = [console_handler]

    file_error: OSError | None = None
    if settings.log_to_file:
        log_path = Path(settings.log_file_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            # Fall back to console-only logging
            file_error = exc
        else:
            file_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.processors.JSONRenderer(),
                    foreign_pre_chain=shared_processors,
                )
            )
            handlers.append(file_handler)

    # Standard library logging for structlog output and third-party packages
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if file_error is not None:
        get_logger(__name__).warning(
            "file_logging_disabled", path=settings.log_file_path, error=str(file_error)
        )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
