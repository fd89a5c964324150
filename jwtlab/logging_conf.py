"""JSON-line logging for the server and the load generator.

Each record becomes one JSON object on stdout. Structured fields passed via
`logger.info("msg", extra={...})` are merged into the object.
`setup_logging()` is idempotent so reloads and test runs don't stack handlers.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging import Handler, LogRecord
from typing import Any

_DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class JsonFormatter(logging.Formatter):
    """Render a record as `{"ts", "level", "logger", "message", ...extras}`."""

    def format(self, record: LogRecord) -> str:  # type: ignore[override]
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }

        msg = record.msg
        if isinstance(msg, dict):
            payload.update(msg)
        else:
            payload["message"] = record.getMessage()

        for key, value in record.__dict__.items():
            if key in _RESERVED or key in payload:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # Datetimes and other extras fall back to str().
        return json.dumps(payload, ensure_ascii=False, default=str)


def _make_stream_handler() -> Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    return handler


def _normalize_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def set_level(level: str | int) -> None:
    """Change the threshold of the root and uvicorn loggers."""
    level = _normalize_level(level)
    logging.getLogger().setLevel(level)
    for name in _SERVER_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logging(level: str | int | None = None) -> None:
    """Attach the JSON handler to the root logger and route uvicorn through it.

    Once a handler is installed, later calls only apply an explicit `level`.
    """
    root = logging.getLogger()

    if root.handlers:
        if level is not None:
            set_level(level)
        return

    root.addHandler(_make_stream_handler())
    set_level(_DEFAULT_LEVEL if level is None else level)

    # uvicorn installs its own handlers; drop them so its records reach root.
    for name in _SERVER_LOGGERS:
        lg = logging.getLogger(name)
        lg.propagate = True
        for h in list(lg.handlers):
            lg.removeHandler(h)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger namespaced under `jwtlab`."""
    return logging.getLogger(f"jwtlab.{name}" if name else "jwtlab")
