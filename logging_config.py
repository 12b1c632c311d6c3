"""Logging setup for the storefront API.

Records are rendered as one JSON object per line on stdout and in a
rotating file under ``log_dir``.  The access-log middleware stores the
current request id in ``request_id_var``; ``RequestContextFilter`` copies
it onto every record logged while that request is handled, so service
logs (order created, login failed, ...) can be joined to the access line.
"""

import json
import logging
import logging.handlers
import os
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex


class RequestContextFilter(logging.Filter):
    """Attach the id of the request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = request_id_var.get()
            if request_id is not None:
                record.request_id = request_id
        return True


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("request_id", "user_id"):
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            log_record.update(extra)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    """Send storefront logs as JSON to stdout and ``<log_dir>/storefront.log``.

    uvicorn's own loggers are routed through the same handlers so the
    output stays one format.
    """
    os.makedirs(log_dir, exist_ok=True)
    formatter = JsonFormatter()
    context = RequestContextFilter()

    console_handler = logging.StreamHandler()
    file_handler = logging.handlers.RotatingFileHandler(
        filename=os.path.join(log_dir, "storefront.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
    )
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in (console_handler, file_handler):
        handler.setFormatter(formatter)
        handler.addFilter(context)
        root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
