"""
Logging configuration for the Paygate gateway

All gateway loggers live under the ``paygate`` namespace. Only the namespace
root carries a handler: records go through a QueueHandler so request handlers
and the webhook dispatcher never block on stream writes, and a QueueListener
thread formats them (JSON by default, ``LOG_FORMAT=text`` for local runs).
"""

import atexit
import json
import logging
import os
import queue
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Dict, Optional

ROOT_LOGGER = "paygate"

# LogRecord attributes that are not caller-supplied context
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}

# Context keys that must never reach a log line in clear text
_SECRET_FIELDS = ("secret", "password", "token", "signature", "authorization")

_listener: Optional[QueueListener] = None


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with the ``extra`` context merged in"""

    def __init__(self, environment: str = "development"):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": ROOT_LOGGER,
            "environment": self.environment,
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_") or key in payload:
                continue
            if any(marker in key.lower() for marker in _SECRET_FIELDS):
                value = "[REDACTED]"
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines that still show the event type"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s [%(event_type)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "event_type"):
            record.event_type = "-"
        return super().format(record)


def _stop_listener() -> None:
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None


def configure_logging() -> logging.Logger:
    """
    Attach the queue pipeline to the ``paygate`` logger once per process

    ``LOG_LEVEL`` sets the threshold, ``LOG_FORMAT`` picks ``json`` or ``text``.
    """
    global _listener
    root = logging.getLogger(ROOT_LOGGER)
    if _listener is not None:
        return root

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    root.setLevel(level)
    root.propagate = False

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    if os.getenv("LOG_FORMAT", "json").lower() == "text":
        stream_handler.setFormatter(TextFormatter())
    else:
        stream_handler.setFormatter(JsonFormatter(os.getenv("ENV", "development")))

    log_queue: queue.Queue = queue.Queue(-1)
    root.addHandler(QueueHandler(log_queue))

    _listener = QueueListener(log_queue, stream_handler, respect_handler_level=True)
    _listener.start()
    # Flush whatever is still queued when the interpreter exits
    atexit.register(_stop_listener)
    return root


def build_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger in the ``paygate`` namespace; child loggers share the root pipeline"""
    configure_logging()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
