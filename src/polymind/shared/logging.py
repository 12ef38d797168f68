"""Structured logging configuration and credential redaction."""

import logging
import sys
from typing import Any, cast

import structlog

from polymind.config import get_settings

# Event keys whose values are always masked, whatever logged them
SENSITIVE_KEYS = frozenset({"api_key", "secret_key", "access_token", "authorization", "token"})

# Vendor SDK and HTTP client loggers print request lines that can carry
# endpoints with query-string tokens
NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "httpx", "httpcore", "openai", "anthropic")


def redact_secret(value: str | None, visible: int = 4) -> str:
    """Mask a credential so only a short prefix remains."""
    if not value:
        return ""
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}***"


def scrub(text: str, *secrets: str | None) -> str:
    """Replace every occurrence of the given secrets in ``text``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, redact_secret(secret))
    return text


def redact_credentials(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor masking values bound under sensitive keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        value = event_dict[key]
        event_dict[key] = redact_secret(value if isinstance(value, str) else str(value))
    return event_dict


def setup_logging() -> None:
    """Console output in development, JSON lines everywhere else."""
    settings = get_settings()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_credentials,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if settings.app_debug else logging.INFO,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
