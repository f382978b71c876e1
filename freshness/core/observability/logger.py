"""
Structured JSON logger for the freshness subsystem.

Usage:
    from freshness.core.observability.logger import PhaseTimer
    logger = logging.getLogger(__name__)
    with PhaseTimer(logger, "fanout_owner", owner_id=owner_id):
        ...
"""

import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "message",
}


class FreshnessJSONFormatter(logging.Formatter):
    """Emit one JSON object per log line with reserved fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Attach extra fields (structured context)
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                payload[key] = value

        if "duration" in payload and isinstance(payload["duration"], (int, float)):
            payload["duration"] = round(float(payload["duration"]), 3)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_structured_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(FreshnessJSONFormatter())
    root.handlers.clear()
    root.addHandler(handler)


class PhaseTimer:
    """Context manager to time phases and emit structured completion logs."""

    def __init__(
        self,
        logger: logging.Logger,
        phase: str,
        owner_id: Optional[str] = None,
        run_id: Optional[str] = None,
        status: str = "ok",
        **extra_fields: Any,
    ):
        self.logger = logger
        self.phase = phase
        self.owner_id = owner_id
        self.run_id = run_id
        self.status = status
        self.extra_fields = extra_fields
        self.start: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = (time.perf_counter() - self.start) if self.start else None
        final_status = "failed" if exc_type else self.status
        payload: Dict[str, Any] = {
            "phase": self.phase,
            "status": final_status,
        }
        if self.owner_id:
            payload["owner_id"] = self.owner_id
        if self.run_id:
            payload["run_id"] = self.run_id
        if self.duration is not None:
            payload["duration"] = self.duration
        payload.update(self.extra_fields)

        if exc_type:
            self.logger.error(f"{self.phase}_failed", exc_info=(exc_type, exc_val, exc_tb), extra=payload)
        else:
            self.logger.info(f"{self.phase}_completed", extra=payload)
        return False
