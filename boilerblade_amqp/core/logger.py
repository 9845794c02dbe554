"""
Logger module to configure consistent logging across the application.
"""
import os
import re
import logging
from pythonjsonlogger import jsonlogger
from ..config.config import config

_URL_PASSWORD = re.compile(r'(amqps?://[^:/@]*:)[^@]*(@)')


def mask_url(url):
    """Replace the password of a broker URL with '***' so it can be logged."""
    if not url:
        return url
    return _URL_PASSWORD.sub(r'\1***\2', url)


def _build_formatter():
    if config.LOG_JSON:
        return jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s %(filename)s %(lineno)d"
        )
    return logging.Formatter(config.LOG_FORMAT)


def get_logger(name):
    """
    Get a configured logger with the specified name.
    Each module should use its own logger for better traceability.

    Args:
        name: The name of the logger, usually __name__

    Returns:
        A configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure the logger if it doesn't have handlers already
    if not logger.handlers:
        # Set the log level from configuration
        log_level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
        logger.setLevel(log_level)

        formatter = _build_formatter()

        # Add file handler if log file is configured
        if config.LOG_FILE:
            log_dir = os.path.dirname(config.LOG_FILE)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.FileHandler(config.LOG_FILE)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        # Add console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        # Prevent propagation to avoid duplicate logs
        logger.propagate = False

    return logger
