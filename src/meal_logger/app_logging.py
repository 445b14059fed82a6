"""Logging configuration helpers."""

import logging

# Client libraries that log every outbound request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "hpack")


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the application logger.

    Safe to call repeatedly; later calls only adjust the level.
    """
    logger = logging.getLogger("meal_logger")
    logger.setLevel(level.upper())
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s: %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
