# Structured JSON-line logging for the flight-log tools (Loki/Promtail friendly)

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# One id per CLI invocation; every event of that run carries it
_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

SERVICE_NAME = os.getenv("SERVICE_NAME", "flightlog")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")

# Attributes every LogRecord already has; structured fields must not shadow them
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class LokiJSONFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, service, message, run_id, then event fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "message": record.getMessage(),
        }

        rid = _run_id.get()
        if rid:
            payload["run_id"] = rid

        payload.update(
            (k, v) for k, v in vars(record).items()
            if k not in _RECORD_ATTRS and k not in payload and not k.startswith("_")
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging() -> None:
    """
    Install the JSON formatter on the root logger, once per process.

    Logs go to stderr (stdout is the CLI summary) and also to LOG_FILE when set.
    """
    root = logging.getLogger()
    if getattr(root, "_flightlog_configured", False):
        return

    root.setLevel(LOG_LEVEL)
    formatter = LokiJSONFormatter()

    handlers = [logging.StreamHandler(sys.stderr)]
    if LOG_FILE:
        try:
            os.makedirs(os.path.dirname(LOG_FILE) or ".", exist_ok=True)
            handlers.append(logging.FileHandler(LOG_FILE))
        except OSError as e:
            root.error(f"Failed to set up file logging: {e}")

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root._flightlog_configured = True  # type: ignore[attr-defined]


def new_run_id() -> str:
    rid = uuid.uuid4().hex
    _run_id.set(rid)
    return rid


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """
    Log ``event`` with structured fields.

    A field named like a LogRecord attribute (``filename``, ``module``, ...)
    is written as ``field_<name>`` instead.
    """
    extra = {(f"field_{k}" if k in _RECORD_ATTRS else k): v for k, v in fields.items()}
    logger.log(level, event, extra={"event": event, **extra})
