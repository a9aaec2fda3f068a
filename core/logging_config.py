# core/logging_config.py

import logging
import json
import re
from datetime import datetime, timezone
from core.request_context import get_request_id

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED = {
    "args", "msg", "levelname", "levelno", "name",
    "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process",
    "taskName", "message",
}

# Google API keys ("AIza" + 35 chars); provider errors sometimes echo them back
_API_KEY = re.compile(r"AIza[0-9A-Za-z_\-]{35}")


def redact(text: str) -> str:
    return _API_KEY.sub("AIza***", text)


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
            "request_id": get_request_id(),
        }

        for key, value in record.__dict__.items():
            if key in log_record or key in _RESERVED:
                continue
            if isinstance(value, str):
                value = redact(value)
            else:
                try:
                    json.dumps(value)
                except (TypeError, ValueError):
                    value = repr(value)
            log_record[key] = value

        if record.exc_info:
            log_record["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(log_record)


def setup_logging(level: str = "INFO"):
    # httpx logs full URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
