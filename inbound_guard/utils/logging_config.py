"""Structured JSON logging for the enforcement job and its host process."""

from __future__ import annotations

import json
import logging
import os
import socket
import traceback
from collections.abc import Iterable, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

__all__ = [
    "configure_logging",
    "get_logger",
    "get_structured_logger",
    "bind_context",
    "clear_context",
    "logging_context",
    "StructuredJSONFormatter",
    "StructuredLoggerAdapter",
]

# Attributes every LogRecord carries; anything else on the record was supplied
# by the caller and is copied into the JSON payload.
_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "context", "asctime"}

_context: ContextVar[dict[str, Any]] = ContextVar("inbound_guard_log_context", default={})
_configured = False


@lru_cache(maxsize=1)
def _hostname() -> str:
    host = os.getenv("HOSTNAME")
    if host:
        return host
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


class StructuredJSONFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def __init__(self, *, utc: bool = True, service: str = "inbound_guard") -> None:
        super().__init__()
        self.utc = utc
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(
                record.created, UTC if self.utc else None
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", None) or self.service,
            "host": _hostname(),
        }

        context = getattr(record, "context", None) or _context.get()
        for key, value in dict(context).items():
            payload.setdefault(key, value)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            payload["error"] = {
                "type": getattr(exc_type, "__name__", ""),
                "message": str(exc),
                "stack": "".join(traceback.format_exception(*record.exc_info)).strip(),
            }
        elif record.exc_text:
            payload["error"] = {"message": record.exc_text}

        return json.dumps(payload, default=repr, ensure_ascii=True)


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Adapter accepting arbitrary keyword fields, e.g. ``log.info("x", event="y")``."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        for key in [k for k in kwargs if k not in {"exc_info", "stack_info", "stacklevel", "extra"}]:
            extra.setdefault(key, kwargs.pop(key))

        bound = _context.get()
        if bound or self.extra:
            extra.setdefault("context", {**dict(bound), **dict(self.extra or {})})
        return msg, kwargs


def configure_logging(
    level: int | str = logging.INFO,
    *,
    stream: Any | None = None,
    handlers: Iterable[logging.Handler] | None = None,
    formatter: logging.Formatter | None = None,
    reset: bool = True,
) -> None:
    """Install JSON output on the root logger."""
    global _configured

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    formatter = formatter or StructuredJSONFormatter()
    resolved = list(handlers) if handlers else [logging.StreamHandler(stream)]

    root = logging.getLogger()
    if reset:
        root.handlers = []
    for handler in resolved:
        if handler.level == logging.NOTSET:
            handler.setLevel(level)
        if handler.formatter is None:
            handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def get_structured_logger(name: str, **context: Any) -> StructuredLoggerAdapter:
    static = {k: v for k, v in context.items() if v is not None}
    return StructuredLoggerAdapter(get_logger(name), static)


def bind_context(**kwargs: Any) -> Token:
    """Bind key/value pairs to every record logged in the current context."""
    merged = dict(_context.get())
    merged.update({k: v for k, v in kwargs.items() if v is not None})
    return _context.set(merged)


def clear_context(token: Token | None = None) -> None:
    if token is not None:
        _context.reset(token)
    else:
        _context.set({})


@contextmanager
def logging_context(**kwargs: Any):
    token = bind_context(**kwargs)
    try:
        yield
    finally:
        clear_context(token)
