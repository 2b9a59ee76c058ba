"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

from spid_client.logging.context import get_log_context
from spid_client.utils.json_serializers import json_serializer

# Query parameters that carry codes, tokens, secrets or signatures
_CREDENTIAL_PARAM = re.compile(
    r"([?&])(code|oauth_token|access_token|refresh_token|client_secret|sig)=[^&#]*",
    re.IGNORECASE,
)

_CONTEXT_FIELDS = ("client_id", "flow", "trace_id")


def redact_credentials(text: str) -> str:
    """Replace credential query parameter values with [REDACTED]."""
    return _CREDENTIAL_PARAM.sub(r"\1\2=[REDACTED]", text)


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Writes one JSON object per line. Token lifecycle fields passed through
    `extra={...}` are copied into the object; URLs and the message itself are
    scrubbed of authorization codes, tokens and signatures.
    """

    # Structured fields copied from `extra`
    EXTRA_FIELDS = (
        "trace_id",
        "duration_ms",
        "grant_type",
        "lifecycle_state",
        "pending_count",
        "expires_at",
        "redirect_kind",
        "http_status",
        "http_method",
        "http_url",
        "error_category",
        "error_kind",
        "error_code",
        "error",
        "error_type",
    )

    FIELD_TYPES = {
        "duration_ms": float,
        "http_status": int,
        "pending_count": int,
    }

    URL_FIELDS = frozenset({"url", "http_url"})

    # Levels that also get file:line
    LOCATED_LEVELS = frozenset({logging.DEBUG, logging.ERROR, logging.CRITICAL})

    def _field_value(self, name: str, value: Any) -> Any:
        cast = self.FIELD_TYPES.get(name)
        if cast is not None:
            try:
                value = cast(value)
            except (TypeError, ValueError):
                return None
        if name in self.URL_FIELDS and isinstance(value, str):
            value = redact_credentials(value)
        return value

    def _exception_payload(self, record: logging.LogRecord) -> dict[str, Any]:
        exc_type, exc_value, _ = record.exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(UTC)
        entry: dict[str, Any] = {
            "ts": f"{now:%Y-%m-%dT%H:%M:%S}.{now.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": redact_credentials(record.getMessage()),
        }

        context = get_log_context()
        entry.update({name: context[name] for name in _CONTEXT_FIELDS if context[name]})

        if record.levelno in self.LOCATED_LEVELS:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for name in self.EXTRA_FIELDS:
            raw = getattr(record, name, None)
            if raw is None:
                continue
            entry[name] = self._field_value(name, raw)

        if record.exc_info:
            entry["exception"] = self._exception_payload(record)

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Line layout: time - LEVEL - [client] - [flow] - [trace] [state] message.
    Levels are coloured only when the stream is a terminal.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self, *args, stream: TextIO | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._colored = (stream or sys.stdout).isatty()

    def _level(self, record: logging.LogRecord) -> str:
        code = self.LEVEL_COLORS.get(record.levelno)
        if not self._colored or code is None:
            return record.levelname
        return f"\033[{code}m{record.levelname}\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()

        segments = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        segments.extend(f"[{context[name]}]" for name in ("client_id", "flow") if context[name])

        labels = []
        trace_id = getattr(record, "trace_id", None) or context["trace_id"]
        if trace_id:
            labels.append(f"[{trace_id[:8]}]")
        state = getattr(record, "lifecycle_state", None)
        if state:
            labels.append(f"[{getattr(state, 'value', state)}]")

        message = record.getMessage()
        if labels:
            message = f"{' '.join(labels)} {message}"
        return " - ".join(segments + [message])


__all__ = ["JSONFormatter", "ConsoleFormatter", "redact_credentials"]
