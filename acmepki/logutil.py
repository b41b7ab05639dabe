"""
Logging setup for acmepki.

Library modules log through ``logging.getLogger(__name__)``; this module owns
the package logger. Records below ERROR go to a stderr stream handler, ERROR
and above are forwarded to the console manager's error printer.
"""

import logging
import os
import sys

from rich.markup import escape

from .console import console_manager

LOG_LEVEL_ENV = "ACMEPKI_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("acmepki")


class ConsoleManagerHandler(logging.Handler):
    """Forward ERROR and above to ``console_manager.print_error``."""

    def __init__(self) -> None:
        super().__init__(level=logging.ERROR)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            console_manager.print_error(escape(self.format(record)))
        except Exception:
            self.handleError(record)


class _BelowErrorFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


def init_logging(level: str | None = None) -> None:
    """Configure the package logger.

    The level comes from ``ACMEPKI_LOG_LEVEL`` when set, then from ``level``
    (usually ``system.log_level`` of the loaded configuration), then WARNING.
    Calling this again replaces the previously installed handlers.
    """
    level_name = (os.environ.get(LOG_LEVEL_ENV) or level or DEFAULT_LOG_LEVEL).upper()
    numeric_level = getattr(logging, level_name, None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.WARNING

    logger.setLevel(numeric_level)

    for handler in logger.handlers[:]:
        if isinstance(handler, (logging.StreamHandler, ConsoleManagerHandler)):
            logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    stream_handler.addFilter(_BelowErrorFilter())
    logger.addHandler(stream_handler)

    console_handler = ConsoleManagerHandler()
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)
    logger.propagate = False
