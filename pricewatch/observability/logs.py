"""
Process logging setup: console format and daily rotated file log.
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO") -> None:
    """Configure root console logging."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def setup_log_rotation(log_dir: str = ".run", filename: str = "pricewatch.log") -> Optional[TimedRotatingFileHandler]:
    """Setup log rotation for the process log."""
    try:
        # Ensure log directory exists
        os.makedirs(log_dir, exist_ok=True)

        handler = TimedRotatingFileHandler(
            filename=os.path.join(log_dir, filename),
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        # Add to root logger
        logging.getLogger().addHandler(handler)

        logger.info("Log rotation configured (daily, keep 7 days)")
        return handler

    except OSError as e:
        logger.error(f"Failed to setup log rotation: {e}")
        return None
