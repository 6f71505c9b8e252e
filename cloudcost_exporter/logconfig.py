"""Logging set-up: level filtering, output selection and text or JSON formatting."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno, logging.getLevelName(levelno))


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "time": datetime.fromtimestamp(record.created, tz=timezone.utc).astimezone().isoformat(),
        "level": _level_name(record.levelno),
        "msg": record.getMessage(),
    }
    fields.update(
        (key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS
    )
    return fields


class JsonFormatter(logging.Formatter):
    """Formats a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        if record.exc_info:
            fields["exc"] = self.formatException(record.exc_info)
        return json.dumps(fields, default=str)


def _text_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() or ch in '"=' for ch in text):
        return json.dumps(text)
    return text


class _TextFormatter(logging.Formatter):
    """Formats a record as space-separated key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        if record.exc_info:
            fields["exc"] = self.formatException(record.exc_info)
        return " ".join(f"{key}={_text_value(value)}" for key, value in fields.items())


class LevelHandler(logging.Handler):
    """Wraps a handler and drops records below a minimum level."""

    def __init__(self, level: int, handler: logging.Handler) -> None:
        if isinstance(handler, LevelHandler):
            handler = handler.handler
        super().__init__(level)
        self._handler = handler

    @property
    def handler(self) -> logging.Handler:
        """The wrapped handler."""
        return self._handler

    def enabled(self, level: int) -> bool:
        return level >= self.level

    def emit(self, record: logging.LogRecord) -> None:
        if self.enabled(record.levelno):
            self._handler.handle(record)


def get_log_level(level: str) -> int:
    """Map a level name to a logging level; unknown names give INFO."""
    return _LEVELS.get(level, logging.INFO)


def writer_for_output(output: str) -> TextIO:
    """Map "stdout" or "stderr" to the stream; anything else gives stdout."""
    if output == "stderr":
        return sys.stderr
    return sys.stdout


def handler_for_output(output: str, stream: TextIO) -> logging.Handler:
    """A stream handler writing JSON for "json" and key=value text otherwise."""
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter() if output == "json" else _TextFormatter())
    return handler