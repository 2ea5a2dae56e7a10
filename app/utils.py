"""
Shared helpers used across features.
"""
import logging
from datetime import datetime, timezone

from app.core import config


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Usage:
        log = get_logger(__name__)
        log.info("Something happened")
    """
    _configure_root()
    return logging.getLogger(name)


def client_ip(request) -> str | None:
    """Best-effort client address for audit entries."""
    return request.client.host if request.client else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
