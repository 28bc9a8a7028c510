# mpcqa/log.py
"""
Logging setup for the mpcqa package.

    from mpcqa.log import configure_logging
    configure_logging(level="DEBUG")

Modules log through logging.getLogger(__name__), all under the "mpcqa" logger.
"""
from __future__ import annotations

import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Optional

_ROOT_LOGGER_NAME = "mpcqa"


class ConsoleFormatter(logging.Formatter):
    """[ts] LEVEL [module] message"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        name = record.name.replace(f"{_ROOT_LOGGER_NAME}.", "")
        base = f"[{ts}] {record.levelname:8} [{name}] {record.getMessage()}"
        if record.exc_info:
            base += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return base


def configure_logging(*, level: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger. Idempotent: existing handlers are replaced.

    Level defaults to MPCQA_LOG_LEVEL (INFO), or DEBUG when MPCQA_DEBUG=1.
    """
    if level is None:
        if os.environ.get("MPCQA_DEBUG", "").strip().lower() in ("1", "true", "yes"):
            level = "DEBUG"
        else:
            level = os.environ.get("MPCQA_LOG_LEVEL", "INFO")

    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(ConsoleFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
