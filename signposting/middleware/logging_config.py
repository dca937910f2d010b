"""
Logging setup for the signposting service.

Two output shapes share one set of context keys:

    json      one object per line, for the log shipper (production)
    readable  coloured single line, for a terminal (development / tests)

The shape follows LOG_FORMAT when set, otherwise the environment. The
level follows LOG_LEVEL.

Context reaches a record two ways. Services pass ``extra=`` (tenant_id,
item_id, cache_tag, event_type). RequestContextFilter fills request_id
from ``g`` and tenant_id from the route arguments of the current request.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

CONTEXT_KEYS = (
    "request_id",
    "tenant_id",
    "item_id",
    "cache_tag",
    "event_type",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

# Shown inline by the readable formatter, in this order.
_INLINE_KEYS = ("request_id", "tenant_id", "item_id", "cache_tag")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3")


class RequestContextFilter(logging.Filter):
    """Attach request_id / tenant_id of the active request, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = g.get("request_id")
        if getattr(record, "tenant_id", None) is None:
            view_args = request.view_args or {}
            record.tenant_id = view_args.get("tenant_id")
        return True


def _context(record: logging.LogRecord, keys) -> dict:
    found = {}
    for key in keys:
        value = getattr(record, key, None)
        if value is not None:
            found[key] = value
    return found


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record, CONTEXT_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    LEVEL_COLOURS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{colour}{clock} {record.levelname[:4]}{self.RESET} {record.name} {record.getMessage()}"

        inline = _context(record, _INLINE_KEYS)
        if inline:
            line += " [" + " ".join(f"{k}={v}" for k, v in inline.items()) + "]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" {duration:.0f}ms"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _wants_json(app) -> bool:
    explicit = os.getenv("LOG_FORMAT", "").lower()
    if explicit in ("json", "readable"):
        return explicit == "json"
    return app.config.get("ENV_NAME") == "production"


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    Called first in create_app so extension setup is logged too. Repeated
    calls (one app per test session) replace the handler instead of
    stacking another one.
    """
    as_json = _wants_json(app)
    default_level = "INFO" if as_json else "DEBUG"
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging ready: level=%s format=%s",
                        level_name, "json" if as_json else "readable")
