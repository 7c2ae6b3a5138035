"""
Structured logging for the subscription engine.

Everything logs under the "subscription_engine" logger tree. Records carry
billing identifiers (user, subscription, invoice, transaction) as record
attributes so both formatters can lift them out:

- production: one JSON object per line
- anything else: a compact human-readable line

The request id of the HTTP call being served, if any, is read from a
contextvar and stamped on every record by RequestIdFilter.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "subscription_engine"
DETAIL_MAX_CHARS = 500

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

EVENT_FIELDS = (
    "user_id",
    "subscription_id",
    "invoice_id",
    "transaction_id",
    "event_type",
    "error_code",
    "details",
)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def _iso_utc(created: float) -> str:
    stamp = datetime.fromtimestamp(created, timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond:06d}Z"


def _present_fields(record: logging.LogRecord) -> Dict[str, Any]:
    found = {}
    for name in EVENT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    return found


class RequestIdFilter(logging.Filter):
    """Stamp the contextvar request id on records that lack one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "timestamp": _iso_utc(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            **_present_fields(record),
        }
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_iso_utc(record.created), record.levelname, "[subscriptions]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{key}={value}" for key, value in _present_fields(record).items())
        text = " ".join(parts)
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def configure_logging(env: str = "development") -> None:
    """Install a single stdout handler on the engine logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.handlers = [handler]
    logger.propagate = True


def _clip(value: Any) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) > DETAIL_MAX_CHARS:
        return text[:DETAIL_MAX_CHARS] + "...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    user_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """
    Emit one billing event.

    `extra` values are stringified and clipped so arbitrary objects
    (exceptions, model instances) are safe to pass.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {
        "request_id": get_request_id(),
        "user_id": user_id,
        "subscription_id": subscription_id,
        "invoice_id": invoice_id,
        "transaction_id": transaction_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    if extra:
        fields["details"] = {key: _clip(value) for key, value in extra.items()}

    logger.log(logging.getLevelName(level.upper()), msg, extra=fields)
