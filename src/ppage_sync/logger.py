"""Logging setup for applications embedding the sync engine.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed once by ``setup_logging()``, normally via
``service.create_orchestrator()``.
"""

import json
import logging
import os
import sys

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_STDERR_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"

# Chatty below WARNING; only shown when debugging.
_NOISY_LOGGERS = ("urllib3", "requests", "charset_normalizer")


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ``ts``, ``level``, ``logger``, ``msg``.

    A traceback, when present, goes into ``exc``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(log_format: str, text_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    return logging.Formatter(text_format, datefmt=_DATE_FORMAT)


def _resolve_level(debug: bool, level: str | None) -> int:
    if debug:
        return logging.DEBUG
    name = os.getenv("LOG_LEVEL", level or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(
    debug: bool = False,
    log_file: str | None = None,
    log_format: str = "text",
    level: str | None = None,
) -> None:
    """Install stderr (and optionally file) handlers on the root logger.

    Level precedence: *debug* > ``LOG_LEVEL`` env var > *level* > INFO.

    Args:
        debug: Force DEBUG.
        log_file: Also append records to this file.
        log_format: ``"text"`` or ``"json"``.
        level: Level name from the ``logging`` config section.
    """
    log_level = _resolve_level(debug, level)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(log_format, _STDERR_FORMAT))
    handlers: list[logging.Handler] = [stderr_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(_formatter(log_format, _FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    if log_level != logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
