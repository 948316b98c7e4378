"""
Logging setup for the relay service.

Relay events (session opens, tool invocations, flush statistics) go to the
``speech_relay`` logger. The client libraries that carry the backend leg log
under their own names; their warnings (keepalive timeouts, abnormal closes,
HTTP connector errors) are routed to the same console and rotating file so a
failed call can be followed from one log.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Tuple

from speech_relay.config.constants import LOGGER_NAME

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_FILE_NAME = "speech_relay.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Loggers of the backend-leg client libraries and the level they are kept at
BACKEND_LOGGERS = {
    "websockets.client": logging.WARNING,
    "aiohttp.client": logging.WARNING,
}


def _build_handlers(log_dir: Path) -> Tuple[List[logging.Handler], Optional[str]]:
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]
    file_error = None

    try:
        log_dir.mkdir(exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    except OSError as e:
        file_error = f"Could not set up file logging in {log_dir}: {e}"

    return handlers, file_error


def _attach(logger: logging.Logger, handlers: List[logging.Handler], level: int) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def configure_logging(level: str = None, log_dir: Path = None):
    """
    Configure the relay logger and the backend client loggers.

    Calling it again replaces the handlers, so ``run.py`` can apply
    ``--log-level`` after the import-time configuration in ``main.py``.

    Args:
        level: Optional level name overriding the LOG_LEVEL environment variable
        log_dir: Optional directory for the rotating log file (default LOG_DIR)

    Returns:
        logging.Logger: The relay logger
    """
    handlers, file_error = _build_handlers(log_dir or LOG_DIR)

    logger = logging.getLogger(LOGGER_NAME)
    _attach(logger, handlers, getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))

    for name, library_level in BACKEND_LOGGERS.items():
        _attach(logging.getLogger(name), handlers, library_level)

    if file_error:
        logger.warning(file_error)
    logger.info(f"Logging configured ({logging.getLevelName(logger.level)})")
    return logger
