from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_actor_id, get_correlation_id


HTTP_FIELDS = ("method", "path", "status_code", "duration_ms")
SECURITY_FIELDS = (
    "resource",
    "record_id",
    "role",
    "assignee_id",
    "previous_assignee_id",
    "requested",
    "succeeded",
    "failed",
)
DIRECTORY_FIELDS = ("team_id", "previous_team_id", "manager_id", "previous_manager_id")
EVENT_FIELDS = ("event_name", "status", "error")

# Only these ``extra=`` keys reach the output; anything else passed by a caller is dropped.
STRUCTURED_FIELDS = frozenset(HTTP_FIELDS + SECURITY_FIELDS + DIRECTORY_FIELDS + EVENT_FIELDS)
MAX_ERROR_LENGTH = 500


class RequestContextFilter(logging.Filter):
    """Stamps the current correlation id and actor onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        if getattr(record, "actor_id", None) is None:
            record.actor_id = get_actor_id()
        return True


_default_record_factory = logging.getLogRecordFactory()


def _context_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: getattr(record, key)
            for key in sorted(STRUCTURED_FIELDS)
            if getattr(record, key, None) is not None
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "actor_id": getattr(record, "actor_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    """Install the JSON stdout handler on the root logger once per process."""

    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_configured", False):
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved_level = logging.getLevelName(level_name)
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved_level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved_level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_context_record_factory)
    root_logger._crm_configured = True  # type: ignore[attr-defined]
