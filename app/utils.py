"""
Shared helpers.
"""
import logging

from app.core import config


_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once, using LOG_LEVEL unless a level is given."""
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance
    """
    configure_logging()
    return logging.getLogger(name)
