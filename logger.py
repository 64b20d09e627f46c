"""
Logging configuration for the storefront.

One package logger writes to stdout; modules ask for a child logger by name.
"""
import logging
import sys

import config

logger = logging.getLogger("hvac_store")
logger.setLevel(config.LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(config.LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(console_handler)

logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """Return the package logger, or a child of it when a name is given."""
    if name:
        return logging.getLogger(f"hvac_store.{name}")
    return logger
