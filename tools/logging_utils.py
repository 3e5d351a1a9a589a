"""Logging Utilities for the Meal Plan Service
=============================================

Centralized logging configuration and utilities.

Usage:
    from tools.logging_utils import get_logger

    logger = get_logger(__name__)
    logger.info("Operation completed successfully")
    logger.error("Operation failed")

Standards:
    - Backend/operational code: MUST use logger
    - User-facing output: Use print() for CLI
    - Log levels: CRITICAL, ERROR, WARNING, INFO, DEBUG
    - Configuration: config.LOGGING_CONFIG
    - Location: data/logs/meal_planner.log (10MB rotation, 5 backups)
"""

import os
import logging
import logging.config

from config import LOGGING_CONFIG

_configured = False


def setup_logging():
    """
    Initialize logging configuration once.

    Idempotent - safe to call multiple times.
    """
    global _configured
    if _configured:
        return
    try:
        from config import DATA_DIR
        os.makedirs(str(DATA_DIR / "logs"), exist_ok=True)
        logging.config.dictConfig(LOGGING_CONFIG)
        _configured = True
    except Exception as e:
        print(f"Warning: Logging setup failed: {e}")


def get_logger(name: str) -> logging.Logger:
    """
    Get logger for module.

    Args:
        name: Module name (use __name__)

    Returns:
        Configured logger instance
    """
    setup_logging()
    return logging.getLogger(name)


# Log level mapping for emoji prefixes
LOG_LEVEL_MAPPING = {
    "✅": logging.INFO,      # Success messages
    "⚠️": logging.WARNING,   # Warnings
    "❌": logging.ERROR,     # Errors
    "🔍": logging.DEBUG,     # Debug/info
    "📊": logging.INFO,      # Statistics
    "🚀": logging.INFO,      # Process starts
}


def log_with_emoji(logger: logging.Logger, message: str):
    """
    Log message with appropriate level based on emoji prefix.

    Example:
        log_with_emoji(logger, "✅ Weekly plan committed")
        # Logs at INFO level
    """
    emoji = message[:2].strip() if len(message) >= 2 else None
    level = LOG_LEVEL_MAPPING.get(emoji, logging.INFO)
    logger.log(level, message)
