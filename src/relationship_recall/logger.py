from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

_LEVEL_VARS = ("RECALL_LOG_LEVEL", "LOG_LEVEL")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shipping."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.hostname = os.getenv("HOSTNAME", "localhost")

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "host": self.hostname,
            "pid": record.process,
            "thread": record.threadName,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        return json.dumps(payload, default=str)


def _resolve_level(level: str | None) -> int:
    name = level
    for var in _LEVEL_VARS:
        if name:
            break
        name = os.getenv(var)
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def _console_handler() -> logging.Handler:
    from rich.logging import RichHandler

    handler = RichHandler(rich_tracebacks=True, markup=False, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    return handler


def configure_logging(level: str | None = None, json_output: bool = False) -> None:
    """Install one root handler: rich for terminals, JSON when LOG_FORMAT=json."""
    if json_output or os.getenv("LOG_FORMAT") == "json":
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = _console_handler()
    logging.basicConfig(level=_resolve_level(level), handlers=[handler], force=True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_extra(**fields: Any) -> dict[str, Any]:
    """``extra=`` mapping whose fields JSONFormatter merges into the record."""
    return {"extra_fields": fields}
