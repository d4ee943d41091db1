# packages/energy_alloc_core/logging_utils.py
import logging

from packages.energy_alloc_core.config import config

formatter = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)


def _build_handlers() -> list:
    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(config.LOG_LEVEL)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    # File handler only when a path is configured
    if config.LOG_FILE:
        file_handler = logging.FileHandler(config.LOG_FILE, encoding="utf-8")
        file_handler.setLevel(config.LOG_LEVEL)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    return handlers


def get_logger(name: str = "energy_alloc_core") -> logging.Logger:
    """Return a configured logger instance."""
    logger = logging.getLogger(name)
    logger.setLevel(config.LOG_LEVEL)

    # Avoid duplicate handlers if called multiple times
    if not logger.handlers:
        for handler in _build_handlers():
            logger.addHandler(handler)

    return logger
