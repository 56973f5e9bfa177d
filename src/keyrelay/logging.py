"""Logging setup for the relay process.

Every module logs through ``logging.getLogger(__name__)``, so the router,
liveness monitor and server all sit under the ``keyrelay`` logger. aiohttp
logs through its own ``aiohttp.*`` hierarchy; it shares the relay's
handlers but never goes below WARNING, so per-request access lines stay
out of the relay log.
"""

import logging
from pathlib import Path

from keyrelay.config import Config

LOGGER_NAME = "keyrelay"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers configured by setup_logging, in setup order
_configured: list[logging.Logger] = []


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(config: Config) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: Config) -> logging.Logger:
    """Attach console (and optional file) handlers for the relay.

    Idempotent: once configured, later calls return the relay logger
    without adding handlers.

    Args:
        config: Configuration with ``log_level`` and ``log_file``.

    Returns:
        The ``keyrelay`` package logger.
    """
    relay_logger = logging.getLogger(LOGGER_NAME)
    if _configured:
        return relay_logger

    level = _resolve_level(config.log_level)
    handlers = _build_handlers(config)
    for name, logger_level in (
        (LOGGER_NAME, level),
        ("aiohttp", max(level, logging.WARNING)),
    ):
        logger = logging.getLogger(name)
        logger.setLevel(logger_level)
        logger.handlers.clear()
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False
        _configured.append(logger)

    return relay_logger


def reset_logging() -> None:
    """Detach everything setup_logging installed. Used for testing."""
    while _configured:
        logger = _configured.pop()
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
