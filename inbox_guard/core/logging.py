"""Structured logging for the limiter service.

Every record passes two filters before it is formatted:

- ``RequestIdFilter`` stamps the correlation id of the request being served.
- ``SensitiveDataFilter`` scrubs extras. Operator secrets become
  ``[REDACTED]``; client identity (identifiers, user ids, addresses) is
  replaced by ``hash_identifier`` so a client can still be followed across
  events without its address reaching the sink.

Alerting keys off event names used as messages, e.g. ``rate_limit.fail_open``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from inbox_guard.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

SECRET_KEYS: frozenset[str] = frozenset(
    {
        "x-admin-key",
        "admin_api_keys",
        "app_admin_api_keys",
        "authorization",
        "cookie",
        "set-cookie",
        "token",
        "secret",
        "password",
        "redis_url",
    }
)

IDENTITY_KEYS: frozenset[str] = frozenset(
    {
        "identifier",
        "user_id",
        "client_ip",
        "remote_ip",
        "x-forwarded-for",
        "x-real-ip",
        "cf-connecting-ip",
    }
)

SENSITIVE_KEYS_DEFAULT: frozenset[str] = SECRET_KEYS | IDENTITY_KEYS

# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> None:
    _request_id.set(request_id)


def get_request_id() -> str | None:
    return _request_id.get()


def clear_request_id() -> None:
    _request_id.set(None)


def hash_identifier(identifier: str) -> str:
    """Return a short, stable digest of an identifier for log correlation.

    Args:
        identifier: Canonical rate limit identifier (``user:..`` / ``ip:..``).

    Returns:
        First 16 hex chars of the SHA-256 digest.
    """

    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def _scrub(key: str, value: Any, sensitive_keys: frozenset[str]) -> Any:
    lowered = key.lower()
    if lowered in sensitive_keys:
        if lowered in IDENTITY_KEYS and isinstance(value, (str, int)):
            return hash_identifier(str(value))
        return REDACTED
    if isinstance(value, Mapping):
        return {k: _scrub(str(k), v, sensitive_keys) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub("", v, sensitive_keys) for v in value)
    return value


def _extras(record: LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach the current request id unless the caller passed one."""

    def filter(self, record: LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub secrets and client identity from a record's extras in place."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def filter(self, record: LogRecord) -> bool:
        # one record can reach several handlers; hashing twice would break correlation
        if getattr(record, "_scrubbed", False):
            return True
        for key, value in _extras(record).items():
            setattr(record, key, _scrub(key, value, self.sensitive_keys))
        record._scrubbed = True
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        extras = _extras(record)
        if not getattr(record, "_scrubbed", False):
            extras = {key: _scrub(key, value, self.sensitive_keys) for key, value in extras.items()}
        payload.update(extras)

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _open_sink(cfg: LogSettings) -> logging.Handler:
    if cfg.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/app.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(path, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8")
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the single root handler used by the service.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = _open_sink(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers; keep its records off the root one
    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).propagate = False
