"""JSON logging for the sweeper, tagged with a per-operation correlation id."""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, TextIO

from ..config.settings import MonitoringConfig, get_app_config

_correlation_id: ContextVar[str] = ContextVar("sweeper_correlation_id", default="-")
_configured = False

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "correlation_id"}


def current_correlation_id() -> str:
    return _correlation_id.get()


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_FIELDS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """Renders each record as a single JSON line; ``extra=`` values go under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or current_correlation_id(),
        }
        fields = _extra_fields(record)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = current_correlation_id()
        return True


def configure_logging(config: Optional[MonitoringConfig] = None, stream: Optional[TextIO] = None) -> None:
    """Install the JSON handler on the root logger once per process.

    Logs go to stderr by default; stdout is reserved for command output.
    """

    global _configured
    if _configured:
        return
    level_name = (config or get_app_config().monitoring).log_level.upper()
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(_CorrelationFilter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.getLevelNamesMapping().get(level_name, logging.INFO))
    logging.captureWarnings(True)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


@contextmanager
def correlation_scope(label: Optional[str] = None) -> Iterator[str]:
    """Bind a fresh correlation id (``label-xxxxxxxx``) for the duration of the block."""

    suffix = uuid.uuid4().hex[:8]
    token = _correlation_id.set(f"{label}-{suffix}" if label else suffix)
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "correlation_scope",
    "current_correlation_id",
    "get_logger",
]
