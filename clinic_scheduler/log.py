"""Structured JSON logging helpers for scheduling events."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any

_OPTIONAL_FIELDS = ("appointment_id", "patient_id", "client_id", "status", "error_code", "error_message")


class JsonFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "logger": record.name,
            "level": record.levelname.lower(),
            "event": getattr(record, "event", "log"),
        }
        for field in _OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = mask_identifier(value) if field == "patient_id" else value

        message = record.getMessage()
        if message:
            payload["message"] = message
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def mask_identifier(value: str) -> str:
    """Mask a patient identifier, keeping the first character for debugging."""
    value = str(value)
    if not value:
        return ""
    if len(value) == 1:
        return "*"
    return f"{value[0]}{'*' * (len(value) - 1)}"


def get_structured_logger(name: str = "clinic_scheduler") -> logging.Logger:
    """Return a logger configured to emit JSON records."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_scheduling_event(
    logger: logging.Logger,
    event: str,
    message: str = "",
    *,
    level: int = logging.INFO,
    appointment_id: str | None = None,
    patient_id: str | None = None,
    client_id: str | None = None,
    status: str | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> None:
    """Emit a structured scheduling event."""
    extra: dict[str, Any] = {
        "event": event,
        "appointment_id": appointment_id,
        "patient_id": patient_id,
        "client_id": client_id,
        "status": status,
        "error_code": error_code,
        "error_message": error_message,
    }
    logger.log(level, message, extra=extra)
