"""Logging setup for ai-voice.

stdout carries the MCP JSON-RPC stream, so diagnostics only ever go to
rotating files in the system temp directory:

* ``ai-voice-synthesis.log`` holds one JSON object per line for every
  synthesis attempt, fallback, discovery run and playback failure.
* ``ai-voice-server.log`` holds plain ``[time] LEVEL: message`` lines for
  startup and configuration, with any context appended as ``key=value``.

Loggers that point at the same file share one handler, so rotation of a
file is driven by exactly one ``RotatingFileHandler``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from typing import Any


LOG_DIR = tempfile.gettempdir()
SYNTHESIS_LOG = os.path.join(LOG_DIR, "ai-voice-synthesis.log")
SERVER_LOG = os.path.join(LOG_DIR, "ai-voice-server.log")

MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 3

PREVIEW_CHARS = 80


class StructuredFormatter(logging.Formatter):
    """Render a record together with its ``context`` dict.

    With ``json_lines`` set, each record becomes a single JSON object with
    ``timestamp``, ``level``, ``logger``, ``message`` and, when present,
    ``context`` and ``exception``.  Otherwise the record is one readable
    line with the context as trailing ``key=value`` pairs.
    """

    def __init__(self, json_lines: bool = True):
        super().__init__()
        self.json_lines = json_lines

    def _timestamp(self, record: logging.LogRecord) -> str:
        if self.json_lines:
            return self.formatTime(record, "%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}"
        return self.formatTime(record, "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        ctx = getattr(record, "context", None) or {}
        error = None
        if record.exc_info and record.exc_info[0] is not None:
            error = self.formatException(record.exc_info)

        if self.json_lines:
            entry: dict[str, Any] = {
                "timestamp": self._timestamp(record),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            if ctx:
                entry["context"] = ctx
            if error:
                entry["exception"] = error
            return json.dumps(entry, default=str, ensure_ascii=False)

        line = f"[{self._timestamp(record)}] {record.levelname}: {record.getMessage()}"
        if ctx:
            line += " " + " ".join(f"{k}={v}" for k, v in ctx.items())
        if error:
            line += "\n" + error
        return line


_handlers: dict[str, RotatingFileHandler] = {}


def _handler_for(path: str, json_lines: bool) -> RotatingFileHandler:
    """Return the shared rotating handler for *path*, creating it once."""
    handler = _handlers.get(path)
    if handler is None:
        os.makedirs(os.path.dirname(path) or LOG_DIR, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=MAX_BYTES,
                                      backupCount=BACKUP_COUNT, encoding="utf-8")
        handler.setFormatter(StructuredFormatter(json_lines))
        _handlers[path] = handler
    return handler


def get_logger(
    name: str,
    log_file: str = SYNTHESIS_LOG,
    level: int = logging.DEBUG,
    *,
    json_format: bool = True,
) -> logging.Logger:
    """Return the logger *name*, attached to *log_file*.

    The file's format is fixed by whichever caller opens it first; asking
    again for the same logger and file adds nothing.
    """
    logger = logging.getLogger(name)
    handler = _handler_for(log_file, json_format)
    if handler not in logger.handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def log_context(
    *,
    engine: str = "",
    text_preview: str = "",
    duration_ms: float | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the ``context`` dict passed via ``extra={"context": ...}``.

    Empty engine/preview and ``None`` values are left out; the preview is
    cut to 80 characters and the duration rounded to 0.1 ms.
    """
    ctx: dict[str, Any] = {}
    if engine:
        ctx["engine"] = engine
    if text_preview:
        ctx["text_preview"] = text_preview[:PREVIEW_CHARS]
    if duration_ms is not None:
        ctx["duration_ms"] = round(duration_ms, 1)
    ctx.update((k, v) for k, v in extra.items() if v is not None)
    return ctx
