"""Structured logging for telepoll.

Everything goes through structlog. Bot tokens end up in request URLs, so
every event is passed through a redaction processor before rendering.

Environment:
- TELEPOLL_LOG_LEVEL: debug/info/warning/error/critical (default info)
- TELEPOLL_LOG_FORMAT: "json" for one JSON object per line, console otherwise
- TELEPOLL_LOG_COLOR: force colors on/off for the console renderer
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Any, TextIO

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

_BOT_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
_BARE_TOKEN_RE = re.compile(r"\b\d{3,}:[A-Za-z0-9_-]{6,}")


def _truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _level_value(value: str | None, *, default: str = "info") -> int:
    if not value:
        return _LEVELS[default]
    return _LEVELS.get(value.strip().lower(), _LEVELS[default])


def _redact_text(text: str) -> str:
    text = _BOT_TOKEN_RE.sub("bot[REDACTED]", text)
    return _BARE_TOKEN_RE.sub("[REDACTED_TOKEN]", text)


def _redact_value(value: Any, memo: dict[int, Any]) -> Any:
    """Recursively redact tokens from strings inside containers."""
    if isinstance(value, str):
        return _redact_text(value)
    if isinstance(value, bytes):
        return _redact_text(value.decode("utf-8", errors="replace"))
    if isinstance(value, (dict, list, tuple, set)):
        key = id(value)
        if key in memo:
            return memo[key]
        if isinstance(value, dict):
            redacted: Any = {k: _redact_value(v, memo) for k, v in value.items()}
        elif isinstance(value, list):
            redacted = [_redact_value(v, memo) for v in value]
        elif isinstance(value, tuple):
            redacted = tuple(_redact_value(v, memo) for v in value)
        else:
            redacted = {_redact_value(v, memo) for v in value}
        memo[key] = redacted
        return redacted
    return value


def _redact_processor(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    return _redact_value(event_dict, {})


class SafeWriter:
    """File-like wrapper that stops writing once the stream is gone.

    Background tasks may still log while the interpreter tears down stdout;
    those writes are dropped instead of raising.
    """

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._closed = False

    def write(self, data: str) -> int:
        if self._closed:
            return 0
        try:
            return self._stream.write(data)
        except (ValueError, OSError):
            self._closed = True
            return 0

    def flush(self) -> None:
        if self._closed:
            return
        try:
            self._stream.flush()
        except (ValueError, OSError):
            self._closed = True

    def isatty(self) -> bool:
        try:
            return self._stream.isatty()
        except (ValueError, OSError):
            return False


def _configure(level: int) -> None:
    writer = SafeWriter(sys.stdout)
    if os.environ.get("TELEPOLL_LOG_FORMAT", "").strip().lower() == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        color_env = os.environ.get("TELEPOLL_LOG_COLOR")
        colors = _truthy(color_env) if color_env is not None else writer.isatty()
        renderer = structlog.dev.ConsoleRenderer(colors=colors)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _redact_processor,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=writer),
        cache_logger_on_first_use=False,
    )


def setup_logging(*, debug: bool = False) -> None:
    """Configure structlog for the process.

    ``debug`` forces DEBUG regardless of TELEPOLL_LOG_LEVEL.
    """
    if debug:
        level = logging.DEBUG
    else:
        level = _level_value(os.environ.get("TELEPOLL_LOG_LEVEL"))
    _configure(level)


def get_logger(name: str | None = None) -> Any:
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def bind_context(**values: Any) -> None:
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()

