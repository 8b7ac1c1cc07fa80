"""
GTA - logging

Configures the "gta" logger: plain lines with [*] / [!] / [x] markers, or one
JSON object per line. Output goes to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

LOGGER_NAME = "gta"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
FORMATS = ("plain", "json")


class _PlainFormatter(logging.Formatter):
    MARKERS = {
        logging.DEBUG: "[debug]",
        logging.INFO: "[*]",
        logging.WARNING: "[!]",
        logging.ERROR: "[x]",
        logging.CRITICAL: "[x]",
    }

    def format(self, record: logging.LogRecord) -> str:
        text = f"{self.MARKERS.get(record.levelno, '[?]')} {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def parse_level(name: str) -> int:
    level = LEVELS.get(str(name).strip().lower())
    if level is None:
        raise ValueError(f"invalid log level: {name}")
    return level


def parse_format(name: str) -> str:
    fmt = str(name).strip().lower()
    if fmt not in FORMATS:
        raise ValueError(f"invalid format: {name}")
    return fmt


def setup_logging(level: str = "info", fmt: str = "plain", quiet: bool = False,
                  stream: Optional[TextIO] = None) -> logging.Logger:
    """Point the 'gta' logger at stderr. quiet wins over level and keeps errors only."""
    resolved = logging.ERROR if quiet else parse_level(level)
    formatter: logging.Formatter
    if parse_format(fmt) == "json":
        formatter = _JsonFormatter()
    else:
        formatter = _PlainFormatter()

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(formatter)

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.handlers.clear()
    app_logger.addHandler(handler)
    app_logger.setLevel(resolved)
    app_logger.propagate = False
    return app_logger
