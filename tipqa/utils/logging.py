"""
Category-aware logging utility for tipqa

Logs can be filtered by category (knowledge, payments, chat, system) and by
log level (DEBUG, INFO, WARN, ERROR).

Usage:
    from tipqa.utils.logging import get_logger

    logger = get_logger(__name__, category="payments")
    logger.info("Tip received")
"""

import logging
from typing import List, Optional

from tipqa.config import settings


# Log level hierarchy (lower number = more verbose)
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_categories(raw: Optional[str]) -> Optional[List[str]]:
    """Turn "knowledge, payments" into ["knowledge", "payments"]; None means all."""
    if not raw:
        return None
    categories = [cat.strip().lower() for cat in raw.split(",") if cat.strip()]
    return categories or None


_allowed_categories = parse_categories(settings.log_categories)


class CategoryFilter(logging.Filter):
    """Filter logs by category if LOG_CATEGORIES is set."""

    def __init__(
        self,
        category: Optional[str] = None,
        allowed: Optional[List[str]] = None,
    ):
        """
        Args:
            category: Category name for this logger (e.g. 'knowledge', 'payments')
            allowed: Categories to let through; defaults to LOG_CATEGORIES
        """
        super().__init__()
        self.category = category.lower() if category else "system"
        self.allowed = allowed if allowed is not None else _allowed_categories

    def filter(self, record: logging.LogRecord) -> bool:
        # If no category filter is set, show all logs
        if self.allowed is None:
            return True
        return self.category in self.allowed


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with category filtering support.

    Args:
        name: Logger name (typically __name__)
        category: Category for filtering (knowledge, payments, chat, system).
                  If None, defaults to 'system'

    Returns:
        Logger instance with category filter applied
    """
    logger = logging.getLogger(name)

    log_level = LOG_LEVELS.get(settings.log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # Remove existing category filters to avoid duplicates
    logger.filters = [f for f in logger.filters if not isinstance(f, CategoryFilter)]
    logger.addFilter(CategoryFilter(category))

    return logger
