"""
Logging configuration for posvault

Everything goes through the standard library root logger: a rich console
handler always, plus a size-rotated file when ``log_dir`` is configured.
structlog renders the event dicts as JSON or as console key/values.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from typing import cast

import structlog
from rich.console import Console
from rich.logging import RichHandler

from posvault.config import Settings, get_settings

LOG_FILE_NAME = "posvault.log"

_SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def _handlers(settings: Settings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=True,
            markup=False,
            rich_tracebacks=True,
        )
    ]
    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                settings.log_dir / LOG_FILE_NAME,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            )
        )
    return handlers


def setup_logging(settings: Settings | None = None) -> None:
    """Set up structured logging with rich formatting"""
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=_handlers(settings),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return cast("structlog.stdlib.BoundLogger", structlog.get_logger(name))


# credential-looking fragments, masked before a message is stored or shown
_SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r'token[=:\s]*["\']?[\w\-\.]{8,}["\']?',
        r'password[=:\s]*["\']?[^\s"\']{1,}["\']?',
        r'secret[=:\s]*["\']?[\w\-\.]{8,}["\']?',
        r'key[=:\s]*["\']?[\w\-\.]{20,}["\']?',
        r"(?:https?://)?(?:\w+:)?[\w\-\.]+@[\w\-\.]+",
    )
]


def sanitize_log_content(content: str, max_length: int = 200) -> str:
    """Mask anything that looks like a credential, then truncate"""
    for pattern in _SENSITIVE_PATTERNS:
        content = pattern.sub("[REDACTED]", content)
    if len(content) > max_length:
        content = content[:max_length] + "..."
    return content
