"""Structured logging for git-rest.

Log records carry the correlation context of the request that produced
them (``request_id``, ``workspace_id`` and any extra fields set with
``set_context``).  The context lives in a ``ContextVar`` so concurrent
requests on the threaded server never see each other's ids.

Two output formats are available:

- ``json``: one JSON object per line, for log shippers.
- ``text``: ``<timestamp> LEVEL [logger] [request/workspace] message``.

Usage::

    setup_logging(level="INFO", format_type="json")

    with LogContext(request_id="req-123", workspace_id="ws-abc"):
        logger.info("commit created")
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

# Correlation fields in the order they are rendered.
CORRELATION_FIELDS = ("request_id", "workspace_id")

_context: ContextVar[dict[str, Any]] = ContextVar("git_rest_log_context", default={})

# Attributes every LogRecord carries; anything else came in via ``extra=``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}

# Max characters of a response body written to the log in verbose mode.
RESPONSE_LOG_TRUNCATE = 2048


# ---------------------------------------------------------------------------
# Correlation context
# ---------------------------------------------------------------------------


def set_context(
    request_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Add fields to the current correlation context.

    ``None`` values leave the existing field untouched.
    """
    updates = {"request_id": request_id, "workspace_id": workspace_id, **extra}
    merged = dict(_context.get())
    merged.update({k: v for k, v in updates.items() if v is not None})
    _context.set(merged)


def get_context() -> dict[str, Any]:
    """Return a copy of the current correlation context."""
    return {k: v for k, v in _context.get().items() if v}


def clear_context() -> None:
    _context.set({})


class LogContext:
    """Scope correlation fields to a ``with`` block.

    The previous context is restored on exit, including when the block
    raises.
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        **extra: Any,
    ):
        self._fields = {"request_id": request_id, "workspace_id": workspace_id, **extra}
        self._token = None

    def __enter__(self) -> "LogContext":
        merged = dict(_context.get())
        merged.update({k: v for k, v in self._fields.items() if v is not None})
        self._token = _context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def _utc_timestamp(record: logging.LogRecord) -> str:
    seconds = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
    return f"{seconds}.{int(record.msecs * 1000):06d}Z"


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``logger``, ``message``, the
    correlation context, ``location`` (``file:line:function``), an
    ``exception`` traceback if any, then every ``extra=`` field.
    """

    def __init__(self, include_timestamp: bool = True, include_location: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {}
        if self.include_timestamp:
            entry["timestamp"] = _utc_timestamp(record)
        entry["level"] = record.levelname
        entry["logger"] = record.name
        entry["message"] = record.getMessage()
        entry.update(get_context())
        if self.include_location:
            entry["location"] = f"{record.filename}:{record.lineno}:{record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_record_extras(record))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``<timestamp> LEVEL [logger] [request/workspace] message`` lines."""

    def __init__(self, include_timestamp: bool = True, include_location: bool = False):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        parts = [_utc_timestamp(record)] if self.include_timestamp else []
        parts += [record.levelname, f"[{record.name}]"]

        context = get_context()
        ids = [str(context[f]) for f in CORRELATION_FIELDS if f in context]
        if ids:
            parts.append(f"[{'/'.join(ids)}]")

        parts.append(record.getMessage())
        if self.include_location:
            parts.append(f"({record.filename}:{record.lineno})")

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    include_timestamp: bool = True,
    include_location: bool = True,
) -> None:
    """Send every log record to stderr in the chosen format.

    Replaces any handlers already on the root logger.  werkzeug's own
    access log is turned down to warnings; request lines come from
    ``flask_request_middleware`` instead.
    """
    formatter_cls = JSONFormatter if format_type.lower() == "json" else TextFormatter
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter_cls(
        include_timestamp=include_timestamp, include_location=include_location,
    ))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers[:] = [handler]
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Flask integration
# ---------------------------------------------------------------------------


def flask_request_middleware(app, verbose: bool = False) -> None:
    """Log one start and one completion record per request.

    Each request gets an id (the caller's ``X-Request-ID`` header, or a
    fresh UUID4) which is put into the correlation context, stored as
    ``g.request_id`` and echoed back in the ``X-Request-ID`` header.  With
    *verbose*, the completion record also carries the (truncated) response
    body.
    """
    from flask import g, request

    http_logger = logging.getLogger("git_rest.http")

    @app.before_request
    def start_request():
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.request_started = time.monotonic()
        set_context(request_id=g.request_id, method=request.method, path=request.path)
        http_logger.info(
            "%s %s", request.method, request.path, extra={"event": "request_start"},
        )

    @app.after_request
    def finish_request(response):
        started = g.get("request_started")
        extra: dict[str, Any] = {
            "event": "request_complete",
            "status_code": response.status_code,
            "duration_ms": (time.monotonic() - started) * 1000 if started else None,
        }
        if verbose and not response.direct_passthrough:
            body = response.get_data()[:RESPONSE_LOG_TRUNCATE]
            extra["response_body"] = body.decode("utf-8", errors="replace")
        http_logger.info(
            "%s %s -> %d", request.method, request.path, response.status_code, extra=extra,
        )
        if "request_id" in g:
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def end_request(exception=None):
        if exception is not None:
            http_logger.error("request failed: %s", exception, exc_info=exception)
        clear_context()
