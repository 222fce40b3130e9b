"""Logger configuration for the ``domharvest`` namespace."""

from __future__ import annotations

import logging

from domharvest.config.settings import LoggingConfig

ROOT_LOGGER_NAME = "domharvest"


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Apply ``config`` to the package logger and return it.

    The sink handler, when given, is attached once; configuring the same
    handler twice does not duplicate output.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(config.level)
    if config.sink is not None and config.sink not in logger.handlers:
        logger.addHandler(config.sink)
    return logger
