"""JSON log output with PII redaction.

Worker contact details and public verification tokens must never reach log
sinks. Redaction runs on the rendered message, the bound request context and
every structured field.
"""

import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

REDACTED = "[REDACTED]"
_PATTERNS: tuple[tuple[re.Pattern[str], Any], ...] = (
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED_EMAIL]"),
    (re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), "[REDACTED_PHONE]"),
    (re.compile(r"(/verify/)[A-Za-z0-9_-]+"), r"\1[REDACTED_TOKEN]"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
)
SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "email",
        "phone",
        "token",
        "verification_token",
        "metrics_token",
        "sendgrid_api_key",
        "smtp_password",
    }
)

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("certguard_log_context", default={})
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def redact_pii(value: str) -> str:
    for pattern, replacement in _PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def _scrub(value: Any, field: str | None = None) -> Any:
    if field is not None and field.lower() in SENSITIVE_FIELDS:
        return REDACTED
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, dict):
        return {key: _scrub(item, key) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


def update_log_context(**fields: Any) -> dict[str, Any]:
    """Bind fields to every log line emitted from the current task. ``None`` values are ignored."""
    context = dict(_log_context.get())
    context.update((key, value) for key, value in fields.items() if value is not None)
    _log_context.set(context)
    return context


def clear_log_context() -> None:
    _log_context.set({})


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED and not key.startswith("_") and key != "extra"
    }
    # Call sites pass structured data as extra={"extra": {...}}.
    nested = record.__dict__.get("extra")
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


class RedactingJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_pii(record.getMessage()),
        }
        entry.update(_scrub(_log_context.get()))
        entry.update(_scrub(_record_fields(record)))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc_type"] = record.exc_info[0].__name__
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
