"""
Logging setup for the API and the voice worker.

Modules log through ``logging.getLogger(__name__)`` (the ``app.*`` tree).
``configure_logging`` attaches one stdout handler to that tree, either
plain text or one JSON object per line (LOG_JSON=true), with the current
request id / user id / room attached when set.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar

# Context variables for correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")
room_var: ContextVar[str] = ContextVar("room", default="")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


class ContextFilter(logging.Filter):
    """Copy correlation context onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        record.user_id = user_id_var.get("")
        record.room = room_var.get("")
        return True


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("request_id", "user_id", "room"):
            value = getattr(record, key, "")
            if value:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(log_entry)


def configure_logging(level: str = "INFO", json_output: bool = False, logger_name: str = "app") -> None:
    """Attach the stdout handler once; later calls only change the level."""
    global _configured
    root = logging.getLogger(logger_name)
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(ContextFilter())
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def set_request_context(request_id: str = "", user_id: str = "", room: str = ""):
    """Set context variables for the current request or job."""
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)
    if room:
        room_var.set(room)


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())[:12]
