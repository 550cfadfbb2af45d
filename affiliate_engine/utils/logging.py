"""
Structured JSON logging for the affiliate engine.

One JSON object per line: timestamp, level, correlation_id, logger, message,
plus whitelisted affiliate context fields passed via `extra=`. The
authenticated user id is bound per request and attached to every line that
does not carry its own. Email addresses (PayPal payout destinations) are
masked before they reach the log.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
request_user_ctx: ContextVar[Optional[str]] = ContextVar("request_user", default=None)

# Extra fields copied from `logger.x(..., extra={...})` into the JSON line
EXTRA_FIELDS = (
    "affiliate_id", "user_id", "request_id", "visitor_id", "code",
    "payout_method", "email", "error_code",
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


def bind_request_user(user_id: Optional[Any]) -> None:
    """Attach the authenticated user to log lines for the rest of this request."""
    request_user_ctx.set(str(user_id) if user_id is not None else None)


def mask_email(value: str) -> str:
    """alice@example.com -> ali***@example.com"""
    if not isinstance(value, str) or "@" not in value:
        return value
    local, domain = value.split("@", 1)
    return f"{local[:3]}***@{domain}"


class StructuredJsonFormatter(logging.Formatter):
    """
    Output format:
    {"timestamp": "...", "level": "INFO", "correlation_id": "...", "logger": "...", "message": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: dict[str, Any] = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = mask_email(val) if key == "email" else val

        if "user_id" not in log_entry and request_user_ctx.get():
            log_entry["user_id"] = request_user_ctx.get()

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install a single JSON stream handler on the root logger. Call once at startup."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(stream_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
