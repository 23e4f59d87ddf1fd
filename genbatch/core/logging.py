"""Structured logging for the service and its background tasks.

Log lines are single JSON objects (or plain text when ``LOG_FORMAT=plain``)
built from the record's ``extra`` fields. Two correlation ids ride along
without being passed explicitly:

- ``request_id``, bound by the HTTP middleware for one request
- ``task_id``, bound by the registry while a work function runs

Fields whose name is in the sensitive set (API keys, prompts, speech text,
inline media) are replaced with ``[REDACTED]`` at any nesting depth.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from genbatch.core.config import LogSettings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "authorization",
        "token",
        "secret",
        "password",
        "provider_api_key",
        "app_api_keys",
        "cookie",
        "set-cookie",
        "prompt",
        "text",
        "audio",
        "image_base64",
        "subject_reference",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def bind_task_id(task_id: str | None) -> Token[str | None]:
    """Bind a task id to the current context.

    Each asyncio task runs in its own context copy, so a binding made inside
    a work function's runner is visible only to that task.

    Returns:
        Token that ``reset_task_id`` uses to restore the previous value.
    """

    return _task_id_var.set(task_id)


def reset_task_id(token: Token[str | None]) -> None:
    _task_id_var.reset(token)


def get_task_id() -> str | None:
    return _task_id_var.get()


def redact(value: Any, sensitive_keys: frozenset[str] | set[str]) -> Any:
    """Return ``value`` with sensitive mapping keys masked, recursively."""

    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in sensitive_keys else redact(item, sensitive_keys)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, sensitive_keys) for item in value)
    return value


def record_extras(record: LogRecord, sensitive_keys: frozenset[str] | set[str]) -> dict[str, Any]:
    """Collect the ``extra`` fields of a record, redacted."""

    extras = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }
    return redact(extras, sensitive_keys)


class CorrelationFilter(logging.Filter):
    """Copy the context's request and task ids onto records that lack them."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for attr, var in (("request_id", _request_id_var), ("task_id", _task_id_var)):
            if getattr(record, attr, None) is None:
                value = var.get()
                if value:
                    setattr(record, attr, value)
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask sensitive extras on the record itself, before any formatter runs."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(sensitive_keys or SENSITIVE_KEYS_DEFAULT)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in record_extras(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = False,
    ) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr, var in (("request_id", _request_id_var), ("task_id", _task_id_var)):
            value = getattr(record, attr, None) or var.get()
            if value:
                payload[attr] = value

        payload.update(record_extras(record, self.sensitive_keys))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/genbatch.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def configure_logging(log_settings: LogSettings) -> None:
    """Install the single root handler described by ``log_settings``.

    Args:
        log_settings: Log settings resolved at startup.
    """

    handler = _build_handler(log_settings)
    handler.addFilter(CorrelationFilter())
    handler.addFilter(SensitiveDataFilter())

    if log_settings.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_settings.level.upper(), logging.INFO))

    # Avoid double logging from uvicorn if it gets re-configured
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
