"""
Logging helpers: CR/LF sanitising and request id tagging.

User supplied values (emails, titles) end up in log lines, so every record is
passed through ``LogSanitizer`` before it is formatted.
"""

from __future__ import annotations

import contextvars
import logging

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "rfidesk_request_id", default=None
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s"


def _strip_newlines(value):
    if isinstance(value, str):
        return value.replace("\r", "").replace("\n", " ")
    return value


class LogSanitizer(logging.Filter):
    """Strips CR/LF from messages and args, attaches ``request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _strip_newlines(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(_strip_newlines(a) for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {k: _strip_newlines(v) for k, v in record.args.items()}
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get() or "-"
        return True


_installed = False


def install_log_sanitizer() -> None:
    """Attach the sanitizer to the root logger and its handlers (idempotent)."""
    global _installed
    if _installed:
        return
    sanitizer = LogSanitizer()
    root = logging.getLogger()
    root.addFilter(sanitizer)
    for handler in root.handlers:
        handler.addFilter(sanitizer)
    _installed = True


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(LogSanitizer())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())


def set_request_id(request_id: str) -> contextvars.Token[str | None]:
    return _request_id.set(request_id)


def reset_request_id(token: contextvars.Token[str | None]) -> None:
    _request_id.reset(token)
