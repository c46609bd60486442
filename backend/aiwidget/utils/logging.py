import json
import logging
import time
from contextvars import ContextVar
from typing import Optional

# set by RequestIDMiddleware; inherited by tasks spawned while serving the request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

CORRELATION_FIELDS = (
    "request_id",
    "project_id",
    "chat_id",
    "user_id",
    "event",
    "error_code",
    "path",
    "status",
    "duration_ms",
)


class RequestContextFilter(logging.Filter):
    """Stamp the current request id on records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            request_id = request_id_var.get()
            if request_id:
                record.request_id = request_id
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CORRELATION_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]
