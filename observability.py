"""Structured logging: JSON formatter, setup, and per-request access logs.

Invariants:
    - Every record carries timestamp, level, logger name and message
    - Extra fields (order_number, user_id, error_code, ...) surface when present
    - setup_logging is idempotent: repeated calls replace the handler it installed
"""

import json
import logging
import time
from datetime import datetime, timezone

from fastapi import Request

access_logger = logging.getLogger("grocery.access")

_EXTRA_FIELDS = (
    "order_number", "user_id", "error_code", "path", "method",
    "status", "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


_handler = None


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Configure the root logger for the application."""
    global _handler
    if _handler is not None:
        logging.root.removeHandler(_handler)
    _handler = logging.StreamHandler()
    if fmt == "json":
        _handler.setFormatter(JSONFormatter())
    else:
        _handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s",
        ))
    logging.root.addHandler(_handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))


async def log_requests(request: Request, call_next):
    """HTTP middleware writing one access-log line per request."""
    started = time.perf_counter()
    response = await call_next(request)
    access_logger.info(
        f"{request.method} {request.url.path} {response.status_code}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return response
