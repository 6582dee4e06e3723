"""Logging setup for detection runs.

Library modules only call ``logging.getLogger(__name__)``; the host
application decides where records go by calling setup_logging() once.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from browser_explorer.config import settings

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty at DEBUG; detector debug output is what we want to see
NOISY_LOGGERS = ('playwright', 'asyncio', 'httpx', 'httpcore', 'openai', 'anthropic')


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Route log records to stdout and, optionally, a file.

    Args:
        level: Log level name (default: LOG_LEVEL, then INFO). Unknown
            names fall back to INFO.
        log_file: Optional log file path (default: LOG_FILE). Parent
            directories are created.
        format_string: Optional custom format string
        quiet: Logger names capped at WARNING
    """
    level_name = (level or settings.LOG_LEVEL or "INFO").upper()
    numeric_level = getattr(logging, level_name, None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = log_file or settings.LOG_FILE
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the browser_explorer namespace.

    Bare names are prefixed, so ``get_logger("recorder")`` and
    ``get_logger("browser_explorer.recorder")`` return the same logger.
    """
    if name != "browser_explorer" and not name.startswith("browser_explorer."):
        name = f"browser_explorer.{name}"
    return logging.getLogger(name)
