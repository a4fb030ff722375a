"""
Logging for the validation engine.

Every line carries the id of the validation request it belongs to. The id
lives in a context variable set by `request_context()`, and
`RequestContextFilter` copies it onto each record before formatting.
"""
import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

ROOT_LOGGER_NAME = "sqlcheck"

_request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else arrived through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "request_id",
}

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"


def current_request_id() -> Optional[str]:
    return _request_id_ctx.get()


@contextmanager
def request_context(request_id: str) -> Iterator[str]:
    """Binds `request_id` to every log line emitted inside the block."""
    token = _request_id_ctx.set(request_id)
    try:
        yield request_id
    finally:
        _request_id_ctx.reset(token)


class RequestContextFilter(logging.Filter):
    """Copies the active request id onto the record ("-" outside a request for text logs)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed through `extra=` (connection ids, dialects, timings) are
    emitted next to the standard ones; values that are not JSON-native are
    rendered with `str()`.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            payload["request_id"] = request_id

        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        if getattr(record, "request_id", None) is None:
            record.request_id = "-"
        return super().format(record)


def configure_logging(level: str = "INFO", json_format: bool = False, stream: Optional[TextIO] = None) -> None:
    """Installs a single stream handler on the root logger.

    Args:
        level (str): Root log level name.
        json_format (bool): Emit JSON lines instead of plain text.
        stream (TextIO): Destination; stderr when omitted.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter() if json_format else _TextFormatter(TEXT_FORMAT))
    root_logger.addHandler(handler)

    # Engine/pool echo is only useful when debugging SQLAlchemy itself
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Returns a logger under the `sqlcheck` namespace."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
