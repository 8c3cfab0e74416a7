"""
Structured logging configuration.

Every record is reduced to the same case-context dict and then rendered
either as one JSON object per line (production) or as a single readable
line with a ``key=value`` tail (development / testing).

Context keys come from ``extra=`` on the logging call; records emitted while
a request is active also pick up the request id from ``flask.g``.
Log level: controlled via LOG_LEVEL env variable.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Rendered in this order in the readable tail.
CASE_CONTEXT_FIELDS = ("request_id", "tenant_id", "case_id", "step_key", "event_type")
HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")


class RequestIdFilter(logging.Filter):
    """Stamp ``request_id`` onto records emitted inside a Flask request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


def record_context(record: logging.LogRecord) -> dict:
    """Case and HTTP context carried by a record, None values dropped."""
    return {
        key: getattr(record, key)
        for key in CASE_CONTEXT_FIELDS + HTTP_FIELDS
        if getattr(record, key, None) is not None
    }


class CaseLogFormatter(logging.Formatter):
    """Render a record and its case context as JSON or as one readable line."""

    def __init__(self, as_json: bool = False):
        super().__init__()
        self.as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        context = record_context(record)
        if self.as_json:
            return self._format_json(record, context)
        return self._format_line(record, context)

    def _format_json(self, record, context):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
            **context,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)

    def _format_line(self, record, context):
        ts = datetime.now().strftime("%H:%M:%S")
        duration = context.pop("duration_ms", None)
        tail = " ".join(
            f"{key.removesuffix('_id')}={context[key]}"
            for key in CASE_CONTEXT_FIELDS
            if key in context
        )
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if tail:
            line += f"  [{tail}]"
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    Production emits JSON lines; everything else the readable layout.
    Both go to stderr through a single root handler.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(CaseLogFormatter(as_json=is_prod))
    handler.addFilter(RequestIdFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
