"""Log formatters for JSON and console output.

Both formatters scrub credential material: secret-named fields, secret
query parameters in URLs, and bearer/JWT strings that end up inside a
message are replaced with ``[REDACTED]`` before anything is written.
"""

import json
import logging
import re
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from usersync_auth.logging.context import get_log_context
from usersync_auth.utils.json_serializers import json_serializer

REDACTED = "[REDACTED]"

SECRET_FIELDS = frozenset({"client_secret", "access_token", "token", "authorization"})

_SECRET_QUERY = re.compile(
    r"([?&])(sig|token|key|secret|password|auth|client_secret|access_token)=[^&]*",
    re.IGNORECASE,
)
_BEARER = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]{12,}")
# Three base64url segments with a JSON header ("eyJ")
_JWT = re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*")


def redact_text(text: str) -> str:
    """Mask secret query parameters, auth headers and JWTs in free text."""
    text = _SECRET_QUERY.sub(rf"\1\2={REDACTED}", text)
    text = _BEARER.sub(rf"\1 {REDACTED}", text)
    return _JWT.sub(REDACTED, text)


def redact_value(key: str, value: Any) -> Any:
    """Redact one structured field, recursing into mappings."""
    if key.lower() in SECRET_FIELDS:
        return REDACTED
    if isinstance(value, Mapping):
        return {k: redact_value(str(k), v) for k, v in value.items()}
    if isinstance(value, str):
        return redact_text(value)
    return value


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, with the log context and known ``extra``
    fields lifted to the top level.
    """

    # Known extra fields; a type means the value is coerced (None on failure)
    FIELDS: dict[str, type | None] = {
        "trace_id": None,
        "duration_ms": float,
        "http_status": int,
        "http_method": None,
        "http_url": None,
        "error_category": None,
        "error_message": None,
        "error": None,
        "error_type": None,
        # acquisition
        "strategy": None,
        "token_source": None,
        "token_type": None,
        "expires_in": int,
        "expires_at": None,
        "attempts": None,
        "waiters": int,
        "force_refresh": None,
        # credentials
        "client_id": None,
        "tenant_id": None,
        "region": None,
        "auth_domain": None,
        "encryption_scheme": None,
        # health
        "previous_status": None,
        "health_status": None,
        "refresh_count": int,
        "error_count": int,
        "time_to_expiry": float,
        "next_renewal_at": None,
        "delay_seconds": float,
        "method": None,
        # rate limiting
        "rate_limiter": None,
        "wait_seconds": float,
        "calls_per_second": float,
    }

    CONTEXT_FIELDS = ("cycle_id", "component", "trace_id")

    @staticmethod
    def _coerce(kind: type | None, value: Any) -> Any:
        if kind is None:
            return value
        try:
            return kind(value)
        except (ValueError, TypeError):
            return None

    def _timestamp(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, UTC)
        return ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self._timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_text(record.getMessage()),
        }

        context = get_log_context()
        entry.update({k: context[k] for k in self.CONTEXT_FIELDS if context.get(k)})

        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            entry["file"] = f"{record.filename}:{record.lineno}"

        for name, kind in self.FIELDS.items():
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = redact_value(name, self._coerce(kind, value))

        for name in SECRET_FIELDS:
            if getattr(record, name, None) is not None:
                entry[name] = REDACTED

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": redact_text(str(exc_value)) if exc_value else None,
                "stacktrace": redact_text(self.formatException(record.exc_info)),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    ``time - LEVEL - [component] - [cycle] [strategy] message``.

    Level names are colored only when stdout is a TTY.
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno) if self._use_colors else None
        return f"{color}{record.levelname}{self.RESET}" if color else record.levelname

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()

        head = [datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S"),
                self._level(record)]
        if context["component"]:
            head.append(f"[{context['component']}]")

        tags = []
        cycle_id = getattr(record, "cycle_id", None) or context.get("cycle_id")
        if cycle_id:
            tags.append(f"[{cycle_id}]")
        trace_id = getattr(record, "trace_id", None) or context.get("trace_id")
        if trace_id:
            tags.append(f"[{trace_id[:8]}]")
        strategy = getattr(record, "strategy", None)
        if strategy:
            tags.append(f"[{strategy}]")

        message = redact_text(record.getMessage())
        if record.exc_info:
            message = f"{message}\n{redact_text(self.formatException(record.exc_info))}"

        prefix = " - ".join(head)
        if tags:
            return f"{prefix} - {' '.join(tags)} {message}"
        return f"{prefix} - {message}"


__all__ = [
    "JSONFormatter",
    "ConsoleFormatter",
    "REDACTED",
    "SECRET_FIELDS",
    "redact_text",
    "redact_value",
]
