"""
Structured logging configuration.

Services log with ``extra={"project_id": ..., "entity_type": ..., "entity_id": ...,
"actor_id": ...}``; the formatters below surface those keys.

- Production: one JSON object per line, context keys under ``ctx``
- Development / testing: colored single line with a ``[project actor entity]`` tag
- Level: LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
CONTEXT_FIELDS = ("project_id", "actor_id", "entity_type", "entity_id")

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


def _collect(record, fields):
    return {key: getattr(record, key) for key in fields if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(_collect(record, REQUEST_FIELDS))
        ctx = _collect(record, CONTEXT_FIELDS)
        if ctx:
            entry["ctx"] = ctx
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _tag(record):
        parts = []
        if getattr(record, "project_id", None) is not None:
            parts.append(f"p{record.project_id}")
        if getattr(record, "actor_id", None) is not None:
            parts.append(f"u{record.actor_id}")
        if getattr(record, "entity_type", None) is not None:
            parts.append(f"{record.entity_type}:{getattr(record, 'entity_id', '?')}")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{clock} {record.levelname:<7}{self.RESET} {record.name}{self._tag(record)} {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON when the app runs neither in debug nor in testing; readable otherwise.
    Called again for every app the tests create, so existing handlers are replaced.
    """
    structured = not app.debug and not app.testing
    level_name = os.getenv("LOG_LEVEL", "INFO" if structured else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if structured else ReadableFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if structured else "readable")
