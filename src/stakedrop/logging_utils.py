"""Structured logging for the bridge.

Module loggers hang off the ``stakedrop`` logger. Two sinks:

- the console, through Rich, with an ``[epoch N/stage]`` prefix when a
  lifecycle stage is running;
- an optional JSON-lines audit file. Every line carries a ``data`` object
  that starts from the current ``epoch_id`` and ``stage`` and is extended
  with the record's own ``extra={"data": ...}``.

The coordinator sets the context with ``log_context`` around each stage,
so adapter retries and failures logged deep inside a call still say which
epoch and stage they belong to.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from rich.console import Console
from rich.logging import RichHandler


ROOT_LOGGER = "stakedrop"
CONTEXT_FIELDS = ("epoch_id", "stage")

_context: ContextVar[Dict[str, Any]] = ContextVar("stakedrop_log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Add ``fields`` to every record logged inside the block.

    Nested blocks extend the outer context. ``None`` values are ignored so
    callers can pass an epoch id that may not exist yet.
    """
    merged = dict(_context.get())
    merged.update({k: v for k, v in fields.items() if v is not None})
    token = _context.set(merged)
    try:
        yield
    finally:
        _context.reset(token)


def current_context() -> Dict[str, Any]:
    return dict(_context.get())


class EpochContextFilter(logging.Filter):
    """Copies the active log context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _context.get()
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, context.get(name))
        return True


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        epoch_id = getattr(record, "epoch_id", None)
        stage = getattr(record, "stage", None)
        if epoch_id is None and stage is None:
            return message
        label = "/".join(str(part) for part in (epoch_id, stage) if part is not None)
        return f"[{label}] {message}"


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, event, message, data."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            name: getattr(record, name, None) for name in CONTEXT_FIELDS
        }
        extra = getattr(record, "data", None)
        if isinstance(extra, dict):
            data.update(extra)
        elif extra is not None:
            data["value"] = extra

        line: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
            "data": data,
        }
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str, sort_keys=True)


def configure_logging(
    log_file: Optional[Path] = None,
    *,
    level: int = logging.INFO,
) -> logging.Logger:
    """Attach the console handler and, if ``log_file`` is set, the audit file.

    Safe to call more than once; earlier stakedrop handlers are replaced.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()
    context_filter = EpochContextFilter()

    console = RichHandler(
        console=Console(stderr=True), show_time=False, show_path=False, markup=False,
    )
    console.setFormatter(ConsoleFormatter("%(message)s"))
    console.addFilter(context_filter)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        audit = logging.FileHandler(log_file, encoding="utf-8")
        audit.setFormatter(StructuredJsonFormatter())
        audit.addFilter(context_filter)
        logger.addHandler(audit)

    return logger


__all__ = [
    "ConsoleFormatter",
    "EpochContextFilter",
    "StructuredJsonFormatter",
    "configure_logging",
    "current_context",
    "log_context",
]
