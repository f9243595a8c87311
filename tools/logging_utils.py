"""Logging Utilities for FitPlan
=======================================

Centralized logging configuration and utilities.

Usage:
    from tools.logging_utils import get_logger

    logger = get_logger(__name__)
    logger.info("Operation completed successfully")
    logger.error("Operation failed")

Standards:
    - Backend/operational code: MUST use logger
    - User-facing output: Use print()/rich for CLI
    - Configuration: config.LOGGING_CONFIG
    - Location: data/logs/fitplan.log (10MB rotation, 5 backups)
"""

import sys
import os
# Add parent directory to path for imports from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

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
