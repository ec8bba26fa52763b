"""
Shared logging utilities for consistent logging across the application
"""
import logging
import sys
from typing import Optional
from shared.config import config


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with consistent configuration

    Args:
        name: Logger name (typically __name__)
        level: Optional logging level override

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Don't add handlers if they already exist
    if logger.handlers:
        return logger

    # Set level based on config or parameter
    log_level = level or ('DEBUG' if config.application.debug else 'INFO')
    logger.setLevel(getattr(logging, log_level.upper()))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)

    formatter = logging.Formatter(
        '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def log_stage_start(stage: str, target: str):
    """Log the start of a pipeline stage with consistent formatting"""
    logger = get_logger(__name__)
    logger.info(f"Starting {stage} for {target}")


def log_stage_complete(stage: str, target: str, errors: int = 0):
    """Log the completion of a pipeline stage with consistent formatting"""
    logger = get_logger(__name__)
    status = "successfully" if errors == 0 else f"with {errors} error(s)"
    logger.info(f"Completed {stage} {status} for {target}")


def log_error(message: str, exception: Optional[Exception] = None):
    """Log errors with optional exception details"""
    logger = get_logger(__name__)
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=True)
    else:
        logger.error(message)
