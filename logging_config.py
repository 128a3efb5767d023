"""Logging setup shared by the stock modules."""

import logging

LOGGER_NAME = "stock"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_HANDLER_NAME = "stock-stream"


def get_logger(area: str) -> logging.Logger:
    """Return the ``stock.<area>`` logger."""
    return logging.getLogger(f"{LOGGER_NAME}.{area}")


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach one stream handler to the ``stock`` logger.

    Calling it again only updates the level.
    """
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level.upper())
    if not any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    return root
