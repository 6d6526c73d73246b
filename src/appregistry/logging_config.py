"""
Structured logging configuration for the registry.

Produces one JSON object per line (or a readable single line in development)
and filters log records so that nothing secret or bulky leaks into logs:
- credential fields (KV REST tokens, private keys, auth headers) are dropped
- submitted documents, canonical payloads and signatures are redacted
- URLs are reduced to their path

Usage:
    from appregistry.logging_config import setup_logging, get_logger

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)
    logger.info("entity stored", extra={"package_id": "com.example.app"})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

_URL_PATTERN = re.compile(r"(https?://[^\s\"'<>]+)")
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Bearer tokens (KV REST auth)
    (re.compile(r"\b(bearer|token)[=:\s]+['\"]?[\w\-\.]+['\"]?", re.I), "[TOKEN]"),
    # Authorization headers
    (re.compile(r"(authorization)[=:\s]+['\"]?[\w\-\.\s]+['\"]?", re.I), "[AUTH]"),
    # Email addresses (bundle metadata.author)
    (re.compile(r"\b[\w\.-]+@[\w-]+(\.[\w-]+)*\.[a-z]{2,}\b", re.I), "[EMAIL]"),
]

# Fields that must never appear in logs
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "private_key",
        "secret",
        "token",
        "password",
        "authorization",
        "cookie",
        "seed",
        "email",
    }
)

# Bulky or attacker-controlled fields replaced by a placeholder
REDACTED_FIELDS: dict[str, str] = {
    "document": "[DOCUMENT]",
    "body": "[BODY]",
    "canonical": "[CANONICAL]",
    "canonical_jcs": "[CANONICAL]",
    "sig": "[SIGNATURE]",
    "signature": "[SIGNATURE]",
}

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


def _normalize_url(url: str) -> str:
    """Reduce a URL to its path component."""
    return urlsplit(url).path or "/"


def _sanitize_text(text: str) -> str:
    """Strip URLs down to paths and mask tokens and emails in free text."""
    if not text:
        return text

    def _url(match: re.Match[str]) -> str:
        path = _normalize_url(match.group(1))
        return path if path != "/" else "[URL]"

    result = _URL_PATTERN.sub(_url, text)
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _filter_log_record(record: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Drop blocked fields and redact bulky ones, recursing into dicts."""
    if _depth > 3:
        return {"_truncated": "max depth exceeded"}

    filtered: dict[str, Any] = {}
    for key, value in record.items():
        key_lower = key.lower()

        if any(blocked in key_lower for blocked in BLOCKED_FIELDS):
            continue

        if key_lower in REDACTED_FIELDS:
            filtered[key] = REDACTED_FIELDS[key_lower]
            continue

        if key_lower == "url" and isinstance(value, str):
            filtered["endpoint"] = _normalize_url(value)
        elif isinstance(value, (int, float, bool, type(None))):
            filtered[key] = value
        elif isinstance(value, str):
            filtered[key] = _sanitize_text(value)
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
            filtered[key] = items if len(items) <= 10 else f"[list:{len(items)} items]"
        elif isinstance(value, dict):
            filtered[key] = _filter_log_record(value, _depth=_depth + 1)
        else:
            filtered[key] = _sanitize_text(str(value))

    return filtered


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JsonFormatter(logging.Formatter):
    """JSON log formatter, one object per line.

    {"ts":"2026-01-01T00:00:00.000+00:00","level":"INFO","logger":"...","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": _sanitize_text(record.getMessage()),
        }

        if record.levelno >= logging.WARNING:
            log_dict["file"] = record.filename
            log_dict["line"] = record.lineno

        if record.exc_info:
            log_dict["exc"] = _sanitize_text(self.formatException(record.exc_info))

        extra = _extra_fields(record)
        if extra:
            log_dict.update(_filter_log_record(extra))

        return json.dumps(log_dict, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for development and tests."""

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname:8s} {record.name}: {_sanitize_text(record.getMessage())}"
        extra = _extra_fields(record)
        if extra:
            filtered = _filter_log_record(extra)
            if filtered:
                base = f"{base} | " + " ".join(f"{k}={v}" for k, v in filtered.items())
        if record.exc_info:
            base = f"{base}\n{_sanitize_text(self.formatException(record.exc_info))}"
        return base


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """Configure root logging. Call once at startup.

    Args:
        level: Log level (default INFO).
        json_format: Use JSON formatter (default True for production).
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)
