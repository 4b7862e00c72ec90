import logging
from typing import Optional


_DEFAULT_LOGGER_NAME = "redeem-panel"
_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Returns a configured logger instance.

    - One StreamHandler per logger name
    - Defaults to INFO level
    - Safe to call multiple times
    """
    logger_name = name or _DEFAULT_LOGGER_NAME
    logger = logging.getLogger(logger_name)

    if not logger.handlers:
        logger.setLevel(logging.INFO)

        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))

        logger.addHandler(handler)

        # Prevent double logging if root logger is configured
        logger.propagate = False

    return logger
