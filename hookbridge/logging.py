from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

from hookbridge.context import get_correlation_id
from hookbridge.core.config import get_settings


_KNOWN_FIELDS = {
    "method",
    "path",
    "status_code",
    "duration_ms",
    "connection_id",
    "project_id",
    "category",
    "outcome",
    "bitrix_method",
    "error_code",
    "error",
}
_MAX_FIELD_LENGTH = 500

# Bitrix24 inbound webhook URLs embed the access key: /rest/<user_id>/<key>/
_WEBHOOK_SECRET_RE = re.compile(r"(/rest/\d+/)[^/\s\"']+")


def redact_webhook_secrets(value: str) -> str:
    return _WEBHOOK_SECRET_RE.sub(r"\1***", value)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; only whitelisted ``extra`` keys are emitted."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }

        fields: dict[str, Any] = {}
        for key in _KNOWN_FIELDS:
            if key not in record.__dict__:
                continue
            value = record.__dict__[key]
            if isinstance(value, str):
                value = redact_webhook_secrets(value)[:_MAX_FIELD_LENGTH]
            fields[key] = value

        if record.exc_info:
            fields["exception"] = redact_webhook_secrets(self.formatException(record.exc_info))

        payload["fields"] = fields
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_hookbridge_configured", False):
        return

    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._hookbridge_configured = True  # type: ignore[attr-defined]
