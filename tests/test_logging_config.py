"""Tests for logging configuration.

Verifies that logging:
1. Drops credentials and key material (BLOCKED_FIELDS)
2. Redacts documents, canonical payloads and signatures
3. Produces valid JSON output
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from appregistry.logging_config import (
    BLOCKED_FIELDS,
    REDACTED_FIELDS,
    JsonFormatter,
    SimpleFormatter,
    _filter_log_record,
    _normalize_url,
    _sanitize_text,
    get_logger,
    setup_logging,
)


def _record(msg: str = "test", level: int = logging.INFO, lineno: int = 10) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=lineno,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestBlockedFields:
    """Sensitive fields never reach the output."""

    def test_blocked_fields_cover_credentials(self) -> None:
        assert "private_key" in BLOCKED_FIELDS
        assert "token" in BLOCKED_FIELDS
        assert "authorization" in BLOCKED_FIELDS

    def test_filter_removes_partial_matches(self) -> None:
        record = {
            "rest_token": "value",
            "signer_private_key": "value",
            "db_password_field": "value",
            "package_id": "com.example.app",
        }
        filtered = _filter_log_record(record)
        assert filtered == {"package_id": "com.example.app"}

    def test_filter_case_insensitive(self) -> None:
        filtered = _filter_log_record({"Authorization": "Bearer x", "TOKEN": "y"})
        assert filtered == {}


class TestRedaction:
    """Bulky and attacker-controlled fields."""

    @pytest.mark.parametrize("field", sorted(REDACTED_FIELDS))
    def test_field_redacted(self, field: str) -> None:
        filtered = _filter_log_record({field: {"id": "com.example.app"}})
        assert filtered[field] == REDACTED_FIELDS[field]

    def test_url_normalized_to_endpoint(self) -> None:
        filtered = _filter_log_record({"url": "https://kv.example.com/pipeline?token=abc"})
        assert filtered == {"endpoint": "/pipeline"}

    def test_normalize_url_root(self) -> None:
        assert _normalize_url("https://kv.example.com") == "/"

    def test_list_capped_at_10(self) -> None:
        assert _filter_log_record({"cycle": list(range(15))})["cycle"] == "[list:15 items]"
        assert _filter_log_record({"cycle": ["a", "b", "a"]})["cycle"] == ["a", "b", "a"]

    def test_nested_dict_filtered(self) -> None:
        filtered = _filter_log_record({"backend": {"name": "rest", "token": "t", "retries": 3}})
        assert filtered == {"backend": {"name": "rest", "retries": 3}}


class TestSanitizeText:
    """Free-text scrubbing."""

    def test_url_reduced_to_path(self) -> None:
        result = _sanitize_text("POST https://kv.example.com/set?token=abc failed")
        assert "kv.example.com" not in result
        assert "token=abc" not in result
        assert "/set" in result

    def test_bearer_token_redacted(self) -> None:
        result = _sanitize_text("header bearer abc123xyz rejected")
        assert "abc123xyz" not in result
        assert "[TOKEN]" in result

    def test_email_redacted(self) -> None:
        result = _sanitize_text("author dev@example.com")
        assert "dev@example.com" not in result
        assert "[EMAIL]" in result

    def test_interface_tags_untouched(self) -> None:
        text = "missing wallet.sign@1 and kv@2"
        assert _sanitize_text(text) == text

    def test_empty_string_unchanged(self) -> None:
        assert _sanitize_text("") == ""


class TestFormatters:
    """JSON and human-readable output."""

    def test_json_required_fields(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record("hello world")))
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["msg"] == "hello world"
        assert "ts" in parsed
        assert "file" not in parsed

    def test_json_warning_includes_location(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record(level=logging.WARNING, lineno=42)))
        assert parsed["file"] == "test.py"
        assert parsed["line"] == 42

    def test_json_extra_fields_filtered(self) -> None:
        record = _record()
        record.package_id = "com.example.app"
        record.private_key = "k"
        record.signature = {"sig": "abc"}
        parsed = json.loads(JsonFormatter().format(record))
        assert parsed["package_id"] == "com.example.app"
        assert "private_key" not in parsed
        assert parsed["signature"] == "[SIGNATURE]"

    def test_simple_format(self) -> None:
        record = _record("stored")
        record.version = "1.0.0"
        output = SimpleFormatter().format(record)
        assert output.startswith("INFO")
        assert "stored" in output
        assert "version=1.0.0" in output


class TestSetupLogging:
    """setup_logging."""

    def test_setup_logging_json(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)
        get_logger("test_json").info("test message", extra={"package_id": "com.example.app"})
        parsed = json.loads(stream.getvalue().strip())
        assert parsed["msg"] == "test message"
        assert parsed["package_id"] == "com.example.app"

    def test_setup_logging_simple(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=False, stream=stream)
        get_logger("test_simple").info("simple test")
        output = stream.getvalue()
        assert "simple test" in output
        with pytest.raises(json.JSONDecodeError):
            json.loads(output.strip())

    def test_setup_logging_level(self) -> None:
        stream = io.StringIO()
        setup_logging(level=logging.WARNING, json_format=False, stream=stream)
        logger = get_logger("test_level")
        logger.info("info message")
        logger.warning("warning message")
        output = stream.getvalue()
        assert "info message" not in output
        assert "warning message" in output
