"""Logging configuration for the application."""

import logging
import re
import sys

from plexdonate.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

REDACTION = "[REDACTED]"

# Query parameters, key/value pairs and auth headers that carry secrets
SECRET_PATTERNS = [
    re.compile(r"(?i)(x-plex-token=)[^&\s\"']+"),
    re.compile(r"(?i)\b((?:token|secret|password|client_secret|api_key)=)[^&\s\"']+"),
    re.compile(
        r"(?i)([\"']?(?:token|secret|password|client_secret|api_key)[\"']?\s*:\s*[\"'])[^\"']+"
    ),
    re.compile(r"(?i)(authorization:\s*bearer\s+)\S+"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]{8,}"),
]


def redact(message: str) -> str:
    """Mask secrets in a log message."""
    for pattern in SECRET_PATTERNS:
        message = pattern.sub(lambda match: f"{match.group(1)}{REDACTION}", message)
    return message


class RedactingFilter(logging.Filter):
    """Rewrites records so tokens and passwords never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def resolve_level(settings: Settings) -> int:
    if settings.debug:
        return logging.DEBUG
    if settings.log_level:
        return LEVELS.get(settings.log_level.strip().lower(), logging.INFO)
    return logging.INFO


def setup_logging(settings: Settings) -> None:
    """Configure application logging.

    The level comes from ``debug`` or ``LOG_LEVEL``; every handler on the
    root logger redacts secrets.

    Args:
        settings: Application settings
    """
    level = resolve_level(settings)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,  # Override any existing configuration
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RedactingFilter())

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("plexdonate").setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured: environment=%s, level=%s",
        settings.environment,
        logging.getLevelName(level),
    )
