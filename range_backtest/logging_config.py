"""
Logging setup for backtest runs.

Logs go to stderr so stdout carries only command results. JSON lines are
the default; every record is stamped with the running command so a sweep
log can be filtered after the fact.
"""

import logging
import os
import sys
from typing import Iterable, Optional

from pythonjsonlogger.json import JsonFormatter

from .exceptions import ConfigurationError

DEFAULT_LEVEL = "INFO"

# Chatty third-party loggers held at WARNING while caches are built
NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.internal", "asyncio")

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class CommandFilter(logging.Filter):
    """Adds a ``command`` field to every record passing the handler."""

    def __init__(self, command: Optional[str] = None):
        super().__init__()
        self.command = command

    def filter(self, record: logging.LogRecord) -> bool:
        if self.command and not hasattr(record, "command"):
            record.command = self.command
        return True


def resolve_level(level: Optional[str] = None) -> int:
    """
    Turn a level name into a logging constant.

    Falls back to ``LOG_LEVEL`` from the environment, then INFO.

    Raises:
        ConfigurationError: For an unknown level name
    """
    name = (level or os.getenv("LOG_LEVEL") or DEFAULT_LEVEL).upper()
    if name not in LEVELS:
        raise ConfigurationError(f"Unknown log level: {name}. Use one of {', '.join(LEVELS)}")
    return getattr(logging, name)


def quiet_loggers(names: Iterable[str] = NOISY_LOGGERS, level: int = logging.WARNING):
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    level: Optional[str] = None,
    use_json: bool = True,
    command: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger for a backtest command.

    Args:
        level: Level name; ``LOG_LEVEL`` or INFO when omitted
        use_json: JSON lines when True, plain text otherwise
        command: CLI command name added to each record

    Returns:
        Configured root logger

    Example:
        >>> setup_logging("INFO", command="sweep")
        >>> logging.getLogger("range_backtest").info(
        ...     "Sweep started", extra={"combinations": 240}
        ... )
    """
    numeric_level = resolve_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.addFilter(CommandFilter(command))

    if use_json:
        handler.setFormatter(
            JsonFormatter(
                "{asctime}{levelname}{name}{message}",
                style="{",
                datefmt="%Y-%m-%dT%H:%M:%S",
                rename_fields={
                    "asctime": "timestamp",
                    "levelname": "level",
                    "name": "logger",
                },
            )
        )
    else:
        prefix = f"[{command}] " if command else ""
        handler.setFormatter(
            logging.Formatter(
                fmt=f"%(asctime)s [%(levelname)s] {prefix}%(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(handler)

    # Debug runs keep third-party detail
    if numeric_level > logging.DEBUG:
        quiet_loggers()

    return root_logger
