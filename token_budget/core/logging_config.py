"""
Logging setup shared by library consumers and the test suite
"""
import logging

from token_budget.core.config import get_settings


def configure_logging(level: str | None = None) -> None:
    """
    Configure root logging for the process.

    Args:
        level: Log level name; defaults to the configured ``log_level``
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO))
    logging.getLogger(__name__).debug(f"Logging configured at {level_name}")
