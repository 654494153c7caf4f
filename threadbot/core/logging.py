import logging
import sys
from typing import Any

from loguru import logger

from threadbot.config import get_settings

SENSITIVE_KEYS = ("token", "secret", "password", "api_key", "apikey", "auth", "credential")

REDACTED = "[REDACTED]"

# Polled endpoints whose access lines only matter when debugging
QUIET_PATHS = ("/health", "/api/cron/sweep", "/api/telegram/status")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)
PLAIN_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message} | {extra}"
)

INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "apscheduler")


class InterceptHandler(logging.Handler):
    """Send stdlib log records (uvicorn, httpx, apscheduler) through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(value: Any) -> Any:
    """Recursively replace values stored under sensitive keys."""
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return type(value)(redact(v) for v in value)
    return value


def _redact_patcher(record: Any) -> None:
    """Strip tokens and secrets from bound context before any sink sees them."""
    record["extra"] = redact(record["extra"])


def _quiet_paths_filter(record: dict[str, Any]) -> bool:
    """Hide routine INFO lines about polled endpoints; warnings still pass."""
    message = record.get("message", "")
    if any(path in message for path in QUIET_PATHS):
        return bool(record["level"].no > logging.INFO)
    return True


def setup_logging() -> None:
    """Configure loguru for the application."""
    settings = get_settings()

    logger.remove()
    logger.configure(patcher=_redact_patcher)

    if settings.debug:
        logger.add(sys.stderr, level="DEBUG", format=CONSOLE_FORMAT, backtrace=True, diagnose=True)
    else:
        logger.add(
            sys.stderr,
            level="INFO",
            format=PLAIN_FORMAT,
            filter=_quiet_paths_filter,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    names = list(INTERCEPTED_LOGGERS)
    if settings.debug:
        names.append("sqlalchemy.engine")
    for name in names:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Get a logger bound to a module name."""
    return logger.bind(name=name)
