"""
Log output for the alert service.

Two renderings of the same records:

    production  → one JSON object per line, pipeline fields grouped
    otherwise   → coloured console line tagged with request id and pincode

Request id / endpoint / method are bound per HTTP request by
RequestLoggingMiddleware and attached to every record emitted while
that request is being served, including records from the alert
pipeline it triggers.

Pipeline modules pass their fields through ``extra``:

    logger.info("Audience selected", extra={"pincode": "400001", "recipient_count": 12})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from crowdalert.core.config import settings

_current_request: ContextVar[Optional[Dict[str, str]]] = ContextVar(
    "crowdalert_request", default=None
)

# Record attributes the pipeline sets via ``extra``
PIPELINE_FIELDS = (
    "pincode", "user_id", "recipient_count", "media_kind",
    "verified", "duration_ms", "status_code", "endpoint",
)

_NOISY_LOGGERS = (
    "uvicorn.access", "httpx", "httpcore", "twilio.http_client", "sqlalchemy.engine",
)


def bind_request(request_id: str, endpoint: str, method: str) -> None:
    _current_request.set({"request_id": request_id, "endpoint": endpoint, "method": method})


def clear_request() -> None:
    _current_request.set(None)


def current_request() -> Optional[Dict[str, str]]:
    return _current_request.get()


def pipeline_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """The ``extra`` fields of ``record`` that belong to the alert pipeline."""
    return {key: getattr(record, key) for key in PIPELINE_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        request = current_request()
        if request:
            entry["request"] = request

        fields = pipeline_fields(record)
        if fields:
            entry["pipeline"] = fields

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["error"] = {"type": type(exc).__name__, "detail": str(exc)}

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Console output for local runs."""

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
        tags = []
        request = current_request()
        if request:
            tags.append(request["request_id"][:8])
        pincode = getattr(record, "pincode", None)
        if pincode:
            tags.append(f"pin {pincode}")
        tag_str = "".join(f" [{t}]" for t in tags)

        line = (
            f"{self.formatTime(record, '%H:%M:%S')} "
            f"{colour}{record.levelname:<8}{self.RESET}{tag_str} "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            line += f"\n    ↳ {type(exc).__name__}: {exc}"
        return line


def setup_logging(*, json_output: Optional[bool] = None, level: Optional[str] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Defaults come from settings: JSON in production, LOG_LEVEL for the level.
    """
    use_json = settings.is_production if json_output is None else json_output
    level_name = (level or settings.LOG_LEVEL).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
